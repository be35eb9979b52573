"""EduHub session and authentication core."""
