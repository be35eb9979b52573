"""FastAPI adapter for the EduHub session core."""
