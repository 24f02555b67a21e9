"""Media encoding, decoding, and remote resolution."""
