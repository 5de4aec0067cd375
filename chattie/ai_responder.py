"""
AI responder: Claude API wrapper producing structured reply suggestions
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional

from anthropic import APIConnectionError, APIError, AsyncAnthropic, RateLimitError
from pydantic import ValidationError

from chattie.models import (
    AIResponse,
    ConversationContext,
    EmailCategory,
    EmailClassification,
)
from chattie.prompt_templates import PromptTemplates

logger = logging.getLogger(__name__)

JSON_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def _strip_fence(text: str) -> str:
    match = JSON_FENCE.match(text.strip())
    return match.group(1) if match else text.strip()


def parse_ai_response(response_text: str) -> AIResponse:
    """
    Parse the model output into an AIResponse.

    Output that is not valid JSON, or JSON without a message, is used as the
    reply text as-is with conversation_complete False.

    Args:
        response_text: Raw text returned by the model

    Returns:
        Parsed AIResponse
    """
    try:
        data = json.loads(_strip_fence(response_text))
        if not isinstance(data, dict) or not isinstance(data.get("message"), str) or not data["message"].strip():
            raise ValueError("missing message")
    except ValueError as e:
        logger.warning(f"Could not parse AI response as JSON ({e}), using raw text")
        return AIResponse(message=response_text.strip(), conversation_complete=False)

    try:
        return AIResponse.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Ignoring malformed collected info in AI response: {e}")
        return AIResponse(message=data["message"], conversation_complete=False)


def build_chat_messages(context: ConversationContext, customer_message: str) -> List[Dict[str, str]]:
    """
    Map the conversation transcript onto alternating user/assistant turns.

    Consecutive messages from the same side are merged, and the transcript
    always starts with a customer turn.
    """
    turns: List[Dict[str, str]] = []
    entries = [(entry.role, entry.content) for entry in context.message_history]
    entries.append(("customer", customer_message))

    for role, content in entries:
        api_role = "user" if role == "customer" else "assistant"
        if not turns and api_role == "assistant":
            continue
        if turns and turns[-1]["role"] == api_role:
            turns[-1]["content"] += f"\n\n{content}"
        else:
            turns.append({"role": api_role, "content": content})

    return turns


class AIResponder:
    """Wrapper for Claude API interactions"""

    DEFAULT_MODEL = "claude-3-5-sonnet-20241022"
    MAX_TOKENS = 500
    TEMPERATURE = 0.7

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        max_tokens: int = MAX_TOKENS,
        temperature: float = TEMPERATURE,
        client: Optional[AsyncAnthropic] = None,
    ):
        """
        Initialize Claude API client

        Args:
            api_key: Anthropic API key
            model: Claude model name
            max_tokens: Maximum tokens per suggestion
            temperature: Sampling temperature
            client: Preconfigured Anthropic client
        """
        if not api_key and client is None:
            raise ValueError("ANTHROPIC_API_KEY must be provided")

        self.client = client or AsyncAnthropic(api_key=api_key)
        self.model = model or self.DEFAULT_MODEL
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.prompt_templates = PromptTemplates()

    async def suggest_reply(
        self,
        context: ConversationContext,
        customer_message: str,
        business: Any,
    ) -> AIResponse:
        """
        Generate a structured reply suggestion

        Args:
            context: Known contact fields and message history
            customer_message: The new customer message
            business: Business configuration record

        Returns:
            AIResponse with reply text, collected fields and completion flag

        Raises:
            APIError: If Claude API returns an error
            APIConnectionError: If connection to Claude API fails
            RateLimitError: If rate limit is exceeded
        """
        system_prompt = self.prompt_templates.build_system_prompt(business)
        known_info = self.prompt_templates.build_known_info(context)
        if known_info:
            system_prompt = f"{system_prompt}\n\n{known_info}"

        messages = build_chat_messages(context, customer_message)

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=system_prompt,
                messages=messages,
            )
        except RateLimitError as e:
            logger.error(f"Rate limit exceeded: {e}")
            raise
        except APIConnectionError as e:
            logger.error(f"Connection error to Claude API: {e}")
            raise
        except APIError as e:
            logger.error(f"Claude API error: {e}")
            raise

        response_text = response.content[0].text if response.content else ""
        if not response_text.strip():
            raise ValueError("Empty response from Claude API")

        tokens_used = response.usage.input_tokens + response.usage.output_tokens
        logger.info(f"Generated reply suggestion: {len(response_text)} chars, {tokens_used} tokens")

        return parse_ai_response(response_text)

    async def classify_email(self, email_from: str, subject: str, body: str) -> EmailClassification:
        """
        Classify an inbound email for triage

        Args:
            email_from: Sender of the email
            subject: Subject line
            body: Body text

        Returns:
            EmailClassification (OTHER when the model output cannot be read)
        """
        prompt = self.prompt_templates.build_classification_prompt(email_from, subject, body)

        response = await self.client.messages.create(
            model=self.model,
            max_tokens=150,
            temperature=0.0,
            system=self.prompt_templates.CLASSIFICATION_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )

        response_text = response.content[0].text if response.content else ""
        try:
            data = json.loads(_strip_fence(response_text))
            data["category"] = str(data.get("category", "")).upper()
            return EmailClassification.model_validate(data)
        except (ValueError, TypeError, AttributeError, ValidationError) as e:
            logger.warning(f"Unreadable classification for email from {email_from}: {e}")
            return EmailClassification(
                category=EmailCategory.OTHER,
                confidence=0.0,
                reason="Unreadable classification output",
            )


def get_ai_responder(settings) -> AIResponder:
    """
    Get AI responder instance from settings.

    Returns:
        AIResponder instance
    """
    return AIResponder(
        api_key=settings.anthropic_api_key,
        model=settings.ai_model,
        max_tokens=settings.ai_max_tokens,
        temperature=settings.ai_temperature,
    )
