from observer_identity.models.setting import Setting

__all__ = [
    "Setting",
]
