# narrative generation backend — gemini via langchain
# one text-in, text-out call per insight agent

import logging
from typing import Optional

from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_core.prompts import ChatPromptTemplate
from langchain_core.output_parsers import StrOutputParser

from serenity.config import settings
from serenity.errors import GenerationBackendError

logger = logging.getLogger(__name__)


INSIGHT_PROMPT = ChatPromptTemplate.from_messages([
    ("system", "You are part of the analytics team behind Serenity, a mental health chat application. "
     "You answer with JSON only, exactly in the structure you are asked for."),
    ("human", "{prompt}"),
])


class GeminiBackend:
    """generate(prompt) -> text over a ChatGoogleGenerativeAI chain"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
    ):
        self.api_key = settings.GEMINI_API_KEY if api_key is None else api_key
        self.model = model or settings.GEMINI_MODEL
        self.temperature = settings.GEMINI_TEMPERATURE if temperature is None else temperature
        self.max_output_tokens = max_output_tokens or settings.GEMINI_MAX_OUTPUT_TOKENS
        self._chain = None

    def get_chain(self):
        """get or create the insight generation chain"""
        if self._chain is None:
            llm = ChatGoogleGenerativeAI(
                model=self.model,
                google_api_key=self.api_key,
                temperature=self.temperature,
                max_output_tokens=self.max_output_tokens,
            )
            self._chain = INSIGHT_PROMPT | llm | StrOutputParser()
        return self._chain

    async def generate(self, prompt: str) -> str:
        if not self.api_key:
            raise GenerationBackendError("GEMINI_API_KEY is not configured")
        try:
            return await self.get_chain().ainvoke({"prompt": prompt})
        except Exception as e:
            raise GenerationBackendError(f"Gemini request failed: {e}") from e


# singleton backend (chain built on first use)
_backend: Optional[GeminiBackend] = None


def get_generation_backend() -> GeminiBackend:
    """dependency injection for the generation backend"""
    global _backend
    if _backend is None:
        logger.info(f"Creating Gemini backend with model: {settings.GEMINI_MODEL}")
        _backend = GeminiBackend()
    return _backend
