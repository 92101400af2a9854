"""PlumbTix work-order service."""
