"""
Matching Engine Settings Models for Configuration Management
"""
import os
from enum import Enum
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, validator

load_dotenv()


class AIBackend(str, Enum):
    """Available AI providers"""
    GEMINI = "gemini"
    OLLAMA = "ollama"


class StructuredWeights(BaseModel):
    """Weights of the four structured factors (one set for both directions)"""
    subject: float = Field(default=0.40, ge=0.0, le=1.0, description="Weight of subject overlap ratio")
    level: float = Field(default=0.25, ge=0.0, le=1.0, description="Weight of level overlap")
    delivery_mode: float = Field(default=0.20, ge=0.0, le=1.0, description="Weight of delivery mode compatibility")
    price: float = Field(default=0.15, ge=0.0, le=1.0, description="Weight of price compatibility")

    @validator('price')
    def validate_total_weights(cls, v, values):
        total = v + values.get('subject', 0) + values.get('level', 0) + values.get('delivery_mode', 0)
        if abs(total - 1.0) > 0.01:  # Allow small floating point errors
            raise ValueError('Structured weights must sum to 1.0')
        return v


class BlendWeights(BaseModel):
    """How structured and semantic scores combine"""
    structured: float = Field(default=0.7, ge=0.0, le=1.0, description="Weight of the structured score")
    semantic: float = Field(default=0.3, ge=0.0, le=1.0, description="Weight of the semantic score")

    @validator('semantic')
    def validate_total_weights(cls, v, values):
        if abs(v + values.get('structured', 0) - 1.0) > 0.01:
            raise ValueError('Blend weights must sum to 1.0')
        return v


class RetrievalSettings(BaseModel):
    """Candidate retrieval and ranking defaults"""
    candidate_cap: int = Field(default=100, ge=1, le=500, description="Maximum candidates pulled per request")
    provider_sample_size: int = Field(default=5, ge=1, le=20, description="Active listings sampled into a provider profile")
    default_limit: int = Field(default=10, ge=1, le=100, description="Default number of results")
    default_min_score: float = Field(default=0.5, ge=0.0, le=1.0, description="Default minimum combined score")


class EmbeddingSettings(BaseModel):
    """Embedding Provider Configuration"""
    backend: AIBackend = Field(default=AIBackend.GEMINI, description="Embedding provider")
    embed_model: str = Field(default="text-embedding-004", description="Embedding model name")
    api_key: Optional[str] = Field(default=None, description="Provider credential (Gemini)")
    base_url: str = Field(default="https://generativelanguage.googleapis.com/v1beta", description="Provider base URL")
    timeout: int = Field(default=30, ge=1, le=300, description="Request timeout in seconds")
    batch_size: int = Field(default=5, ge=1, le=100, description="Texts embedded concurrently per sub-batch")
    batch_delay: float = Field(default=1.0, ge=0.0, le=60.0, description="Pause between sub-batches in seconds")
    max_retries: int = Field(default=3, ge=1, le=10, description="Attempts on rate-limit responses")
    retry_backoff: float = Field(default=1.0, ge=0.0, le=30.0, description="Backoff factor between retries")
    max_text_chars: int = Field(default=30000, ge=100, description="Embedding text is clamped to this length")
    refresh_candidates: bool = Field(default=True, description="Embed candidates whose cached vector is missing or stale")


class ExplanationSettings(BaseModel):
    """Explanation Generator Configuration"""
    backend: AIBackend = Field(default=AIBackend.GEMINI, description="Text generation provider")
    llm_model: str = Field(default="gemini-1.5-flash", description="Text model name")
    api_key: Optional[str] = Field(default=None, description="Provider credential (Gemini)")
    base_url: str = Field(default="https://generativelanguage.googleapis.com/v1beta", description="Provider base URL")
    temperature: float = Field(default=0.2, ge=0.0, le=2.0, description="Generation temperature")
    timeout: int = Field(default=30, ge=1, le=300, description="Request timeout in seconds")
    short_max_chars: int = Field(default=150, ge=20, le=1000, description="Budget for short explanations")
    detailed_max_chars: int = Field(default=250, ge=20, le=2000, description="Budget for detailed explanations")
    context_field_chars: int = Field(default=200, ge=20, le=2000, description="Budget per free-text field in the prompt")

    @validator('detailed_max_chars')
    def validate_budgets(cls, v, values):
        if 'short_max_chars' in values and v < values['short_max_chars']:
            raise ValueError('detailed_max_chars must not be smaller than short_max_chars')
        return v


class EngineSettings(BaseModel):
    """Complete matching engine configuration"""
    structured_weights: StructuredWeights = Field(default_factory=StructuredWeights)
    blend_weights: BlendWeights = Field(default_factory=BlendWeights)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    explanation: ExplanationSettings = Field(default_factory=ExplanationSettings)

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from environment variables (.env is loaded on import)"""
        api_key = os.getenv("GEMINI_API_KEY") or None
        ollama = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")

        embed_backend = AIBackend(os.getenv("EMBEDDING_BACKEND", AIBackend.GEMINI.value).lower())
        text_backend = AIBackend(os.getenv("LLM_BACKEND", embed_backend.value).lower())

        embedding = EmbeddingSettings(
            backend=embed_backend,
            embed_model=os.getenv(
                "EMBED_MODEL",
                "text-embedding-004" if embed_backend == AIBackend.GEMINI else "nomic-embed-text"
            ),
            api_key=api_key,
            base_url=ollama if embed_backend == AIBackend.OLLAMA else EmbeddingSettings().base_url,
            timeout=int(os.getenv("EMBED_TIMEOUT", "30")),
            batch_size=int(os.getenv("EMBED_BATCH_SIZE", "5")),
            batch_delay=float(os.getenv("EMBED_BATCH_DELAY", "1.0")),
            max_retries=int(os.getenv("EMBED_MAX_RETRIES", "3")),
            refresh_candidates=os.getenv("EMBED_REFRESH_CANDIDATES", "true").lower() == "true",
        )
        explanation = ExplanationSettings(
            backend=text_backend,
            llm_model=os.getenv(
                "LLM_MODEL",
                "gemini-1.5-flash" if text_backend == AIBackend.GEMINI else "llama3.1:8b"
            ),
            api_key=api_key,
            base_url=ollama if text_backend == AIBackend.OLLAMA else ExplanationSettings().base_url,
            temperature=float(os.getenv("LLM_TEMPERATURE", "0.2")),
            timeout=int(os.getenv("LLM_TIMEOUT", "30")),
        )
        retrieval = RetrievalSettings(
            candidate_cap=int(os.getenv("CANDIDATE_CAP", "100")),
            provider_sample_size=int(os.getenv("PROVIDER_SAMPLE_SIZE", "5")),
        )
        return cls(retrieval=retrieval, embedding=embedding, explanation=explanation)
