from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenRouter
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "openai/gpt-4o-mini"
    openrouter_model: str = ""
    planner_model: str = ""  # optional override for planning calls only

    # Search provider
    search_provider: str = "tavily"  # tavily | brave
    tavily_api_key: str = ""
    brave_api_key: str = ""
    search_fallback_to_tavily: bool = True
    search_max_results_per_query: int = 5

    # Extraction (Firecrawl)
    firecrawl_base_url: str = "https://api.firecrawl.dev"
    firecrawl_api_key: str = ""
    extract_top_k: int = 3
    extract_timeout_seconds: float = 45.0

    # Research loop
    research_default_max_depth: int = 7
    research_default_time_limit_seconds: float = 270.0
    max_query_chars: int = 500
    planner_max_retries: int = 2
    event_queue_size: int = 64
    synthesis_context_char_budget: int = 24000
    analysis_content_chars_per_source: int = 6000
    llm_max_tokens: int = 4096

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]


settings = Settings()
