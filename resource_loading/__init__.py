"""Resource capacity, conflict detection and time-phased distribution engine."""
