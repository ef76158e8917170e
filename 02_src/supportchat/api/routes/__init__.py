from . import chat, control, operator, push, status

__all__ = ["chat", "control", "operator", "push", "status"]
