"""
Builds the prompt an AI node sends to its provider from the node's template
and the outputs of its upstream nodes.
"""

from __future__ import annotations

from nodeflow.models.graph import AiNode
from nodeflow.models.provider_registry import is_speech_provider
from nodeflow.providers.errors import ConfigurationError

SEPARATOR = "\n\n---\n\n"
INPUT_PLACEHOLDER = "{{input}}"
CONTEXT_PREAMBLE = "Here is the context/input from the previous step:\n\n"
INSTRUCTION_PREAMBLE = "\n\n---\n\nNow, please do the following:\n\n"


def join_upstream(upstream_outputs: list[str]) -> str:
    return SEPARATOR.join(upstream_outputs)


def compose(node: AiNode, upstream_outputs: list[str]) -> str:
    """
    Compose the prompt for `node`.

    Args:
        node: The AI node about to run
        upstream_outputs: Non-empty outputs of its predecessors, in edge order

    Returns:
        The prompt text

    Raises:
        ConfigurationError: Nothing to send (no prompt, or no speech input)
    """
    template = node.data.prompt_template or ""
    joined = join_upstream(upstream_outputs)

    # Speech nodes read the upstream text aloud as-is
    if is_speech_provider(node.data.provider):
        if joined:
            return joined
        if template.strip():
            return template
        raise ConfigurationError(
            "No input available. Connect a node to provide text to convert to audio."
        )

    if not template.strip():
        raise ConfigurationError("No prompt configured")

    if INPUT_PLACEHOLDER in template:
        return template.replace(INPUT_PLACEHOLDER, joined)
    if joined:
        return f"{CONTEXT_PREAMBLE}{joined}{INSTRUCTION_PREAMBLE}{template}"
    return template
