"""Agent class models and loader exports."""

from .loader import ClassLoadError, ClassLoader, build_overlay, load_classes
from .models import AgentClass, Skill

__all__ = [
    "AgentClass",
    "ClassLoadError",
    "ClassLoader",
    "Skill",
    "build_overlay",
    "load_classes",
]
