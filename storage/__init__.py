"""File access for live logs and level directories."""
