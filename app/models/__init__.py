from app.models.n8n_instance import N8NInstance, Environment

__all__ = ["N8NInstance", "Environment"]
