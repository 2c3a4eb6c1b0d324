"""Services subpackage - rule management and agent price imports."""
