"""Static assets installed on provisioned hosts."""
