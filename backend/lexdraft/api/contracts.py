from typing import Any, Literal

from pydantic import BaseModel, Field

AnalysisType = Literal["summary", "entities", "clauses", "risks", "timeline", "privilegedTerms", "custom"]


class RewriteTextRequest(BaseModel):
    text_to_rewrite: str | None = None
    mode: str = "improve"
    instructions: str | None = Field(default=None, max_length=4000)
    context: str | None = None
    stream: bool = True


class SummarizeTextRequest(BaseModel):
    text_to_summarize: str | None = None
    instructions: str | None = Field(default=None, max_length=4000)
    context: str | None = None
    stream: bool = True


class InlineTextRequest(BaseModel):
    instructions: str | None = None
    selected_text: str | None = None
    surrounding_context: str | None = None
    stream: bool = True


class FieldSuggestionRequest(BaseModel):
    prompt: str | None = None


class AgentDraftRequest(BaseModel):
    instructions: str | None = None
    user_id: str | None = None
    case_id: str | None = None
    document_context: str | None = None
    analysis_context: str | None = None


class IntelligentDraftRequest(BaseModel):
    draft_type: str | None = None
    prompt_details: str | None = None
    document_context: str | None = None
    tone: str | None = None
    length_preference: str | None = None


class TranslationRequest(BaseModel):
    text_to_translate: str | None = None
    target_language: str | None = None
    source_language: str | None = None


class CompareDocumentsRequest(BaseModel):
    text1: Any = None
    text2: Any = None
    goal: Any = None


class AnalyzeDocumentRequest(BaseModel):
    text: str | None = None
    analysis_type: AnalysisType
    document_id: str | None = None
    custom_prompt: str | None = None
    user_id: str | None = None


class ExtractTextWebhookRequest(BaseModel):
    type: str
    record: dict[str, Any] | None = None


class GenerateDocxRequest(BaseModel):
    html_content: str | None = None
    file_name: str | None = Field(default=None, max_length=200)


class SemanticSearchRequest(BaseModel):
    query: str | None = None
    match_threshold: float | None = Field(default=None, ge=-1.0, le=1.0)
    match_count: int | None = Field(default=None, ge=1, le=50)
    user_id: str | None = None


class ExtractVariablesRequest(BaseModel):
    content: dict[str, Any] | None = None


class PrefillVariablesRequest(BaseModel):
    content: dict[str, Any] | None = None
    case_id: str | None = None
    case_data: dict[str, Any] | None = None


class TemplateFromAIRequest(BaseModel):
    instructions: str | None = None
    category: str | None = None
    user_id: str | None = None


class ChatMessageInput(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str
    id: str | None = None


class ChatRequest(BaseModel):
    messages: list[ChatMessageInput] = Field(default_factory=list)
    model_id: str | None = None
    case_id: str | None = None
    conversation_id: str | None = None
    document_context_ids: list[str] = Field(default_factory=list)
    stream_thoughts: bool = False
    user_id: str | None = None


class ClassifyQueryRequest(BaseModel):
    query: str | None = None


class ResearchRequest(BaseModel):
    messages: list[ChatMessageInput] = Field(default_factory=list)
    query: str | None = None
    case_id: str | None = None
    conversation_id: str | None = None
    document_context_ids: list[str] = Field(default_factory=list)
    focused_snippet: str | None = Field(default=None, max_length=4000)
    stream_thoughts: bool = False
    user_id: str | None = None


class VerifyCitationsRequest(BaseModel):
    text: str | None = None
    conversation_id: str | None = None
    user_id: str | None = None
