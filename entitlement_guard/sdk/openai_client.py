"""
Guarded OpenAI content generator.

Gates AI content generation on the account's aiContent entitlement and
records one unit of usage after each successful completion.
"""

from typing import Any, Dict, List, Optional

from openai import OpenAI

from ..core.gate import FeatureGate
from ..storage.models import Feature


class GuardedContentGenerator:
    """OpenAI chat client that counts against an account's aiContent quota.

    Denials raise before any API call. API failures propagate and are not
    counted. Accounting failures after a successful call are loud.
    """

    def __init__(
        self,
        account_id: str,
        gate: FeatureGate,
        model: str = "gpt-4",
        client: Optional[OpenAI] = None
    ):
        """Initialize guarded content generator.

        Args:
            account_id: Account whose quota is charged (required)
            gate: Feature gate for entitlement checks and usage recording
            model: OpenAI model name
            client: Preconfigured OpenAI client (defaults to ``OpenAI()``)

        Raises:
            ValueError: If account_id or model is missing/empty
        """
        if not account_id or not account_id.strip():
            raise ValueError("account_id is required and cannot be empty")
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.account_id = account_id
        self.gate = gate
        self.model = model
        self.client = client or OpenAI()

    def generate(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """Create a chat completion if the account is entitled to one.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response

        Raises:
            ValueError: If messages is empty
            QuotaExceeded, SubscriptionInactive: If the account is not entitled
            OpenAI API errors: Propagated without modification
            Database errors: Propagated without modification
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        def _complete():
            return self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs
            )

        return self.gate.run(self.account_id, Feature.AI_CONTENT, _complete)

    def generate_text(self, messages: List[Dict[str, str]], **kwargs: Any) -> str:
        """Like ``generate`` but return only the first choice's text."""
        response = self.generate(messages, **kwargs)
        if not response.choices:
            raise ValueError("OpenAI response contained no choices")
        return response.choices[0].message.content or ""
