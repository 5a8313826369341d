"""Language-model collaborator: replies and fallback classification."""
from mypail.api.generator import TextGenerator, build_system_prompt

__all__ = ["TextGenerator", "build_system_prompt"]
