"""Model catalog and per-model capability records."""

from dataclasses import dataclass

from playground.llm.chat.models import ModelRef, Provider

DEFAULT_MAX_OUTPUT_TOKENS = 8192
EXTENDED_MAX_OUTPUT_TOKENS = 30000


@dataclass(frozen=True)
class ModelCapabilities:
    """What a model accepts, used to normalize requests before dispatch."""

    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    supports_top_k: bool = False
    supports_json_mode: bool = False


# Provider-level defaults, used for ids missing from the catalog
PROVIDER_DEFAULTS: dict[Provider, ModelCapabilities] = {
    Provider.OPENAI: ModelCapabilities(supports_json_mode=True),
    Provider.ANTHROPIC: ModelCapabilities(supports_top_k=True),
}

MODELS: list[ModelRef] = [
    ModelRef(id="gpt-4o", display_name="GPT-4o", provider=Provider.OPENAI),
    ModelRef(id="gpt-4-turbo", display_name="GPT-4 Turbo", provider=Provider.OPENAI),
    ModelRef(id="gpt-4o-mini", display_name="GPT-4o Mini", provider=Provider.OPENAI),
    ModelRef(id="gpt-3.5-turbo", display_name="GPT-3.5 Turbo", provider=Provider.OPENAI),
    ModelRef(
        id="claude-3-7-sonnet-20250219",
        display_name="Claude 3.7 Sonnet",
        provider=Provider.ANTHROPIC,
    ),
    ModelRef(
        id="claude-3-5-sonnet-20241022",
        display_name="Claude 3.5 Sonnet",
        provider=Provider.ANTHROPIC,
    ),
    ModelRef(
        id="claude-3-opus-20240229",
        display_name="Claude 3 Opus",
        provider=Provider.ANTHROPIC,
    ),
    ModelRef(
        id="claude-3-sonnet-20240229",
        display_name="Claude 3 Sonnet",
        provider=Provider.ANTHROPIC,
    ),
    ModelRef(
        id="claude-3-haiku-20240307",
        display_name="Claude 3 Haiku",
        provider=Provider.ANTHROPIC,
    ),
]

CAPABILITIES: dict[str, ModelCapabilities] = {
    model.id: PROVIDER_DEFAULTS[Provider(model.provider)] for model in MODELS
}
CAPABILITIES["claude-3-7-sonnet-20250219"] = ModelCapabilities(
    max_output_tokens=EXTENDED_MAX_OUTPUT_TOKENS,
    supports_top_k=True,
)


def default_model() -> ModelRef:
    """The model new sessions start with."""
    return MODELS[0]


def get_model(model_id: str) -> ModelRef | None:
    """Look up a catalog entry by id."""
    for model in MODELS:
        if model.id == model_id:
            return model
    return None


def get_capabilities(model: ModelRef) -> ModelCapabilities:
    """Capabilities for a model, falling back to its provider's defaults."""
    capabilities = CAPABILITIES.get(model.id)
    if capabilities is None:
        return PROVIDER_DEFAULTS[Provider(model.provider)]
    return capabilities
