"""dnstally: passive DNS query counting with periodic ranked reports."""
