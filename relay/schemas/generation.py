from pydantic import BaseModel


class GenerateRequest(BaseModel):
    # Emptiness and length are checked by the gateway so the limit stays configurable
    inputs: str | None = None
    language: str | None = None


class GenerateResponse(BaseModel):
    generated_text: str
    backend: str | None = None
    fallback: str | None = None


class StatusResponse(BaseModel):
    current_backend: str | None
    is_ready: bool
    consecutive_failures: int


class WarmUpResponse(BaseModel):
    status: str  # success | pending | error
    backend: str | None = None
    message: str = ""
