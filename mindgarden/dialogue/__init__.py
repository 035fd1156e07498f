"""
AI dialogue: prompt templates, generation backends, the text client and
its voice variant.
"""
from mindgarden.dialogue.client import DialogueClient, DialogueTurn, SessionStart
from mindgarden.dialogue.prompts import RoleContext

__all__ = ["DialogueClient", "DialogueTurn", "RoleContext", "SessionStart"]
