"""FleetFin transaction rules backend."""
