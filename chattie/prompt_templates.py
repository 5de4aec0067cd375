"""
Prompt templates for Claude API reply suggestions
"""
from typing import Any, Dict, List, Optional

from chattie.models import ConversationContext, EmailCategory


class PromptTemplates:
    """Builds the prompts sent to the AI responder"""

    FIELD_NAMES = {
        "name": "Naam van de klant",
        "email": "E-mailadres",
        "phone": "Telefoonnummer (06-nummer)",
        "gardenSize": "Afmetingen van de tuin (bij benadering in meters)",
        "photos": "Foto's van de tuin",
        "address": "Adres",
        "budget": "Budget indicatie",
        "timeline": "Wanneer ze het werk willen laten uitvoeren",
    }

    TONE_INSTRUCTIONS = {
        "friendly": "Wees vriendelijk en warm in je communicatie.",
        "professional": "Wees professioneel maar toegankelijk.",
        "casual": "Wees casual en informeel, alsof je met een vriend praat.",
        "formal": 'Wees formeel en beleefd, gebruik "u" in plaats van "je".',
    }

    RESPONSE_FORMAT = """## Formaat
Reageer altijd in JSON-formaat:
{
  "message": "Je antwoord aan de klant",
  "collectedInfo": {
    "name": "naam als genoemd",
    "email": "email als genoemd",
    "phone": "telefoonnummer als genoemd",
    "gardenSize": "afmetingen als genoemd",
    "extra": {"veldnaam": "waarde voor overige gevraagde velden"}
  },
  "conversationComplete": true/false
}

Zet collectedInfo velden alleen als de klant die informatie IN DIT BERICHT geeft.
Zet conversationComplete op true alleen als ALLE benodigde informatie verzameld is."""

    CLASSIFICATION_SYSTEM_PROMPT = (
        "You are an email triage assistant for a small business. "
        "Classify emails accurately and respond with JSON only."
    )

    @classmethod
    def build_system_prompt(cls, business: Any) -> str:
        """
        Build the system prompt from the business configuration

        Args:
            business: Business configuration record

        Returns:
            System prompt string
        """
        collect_fields: List[str] = business.collect_fields or []
        fields_to_collect = "\n".join(
            f"{i + 1}. **{cls.FIELD_NAMES.get(field, field)}**"
            for i, field in enumerate(collect_fields)
        )

        tone = cls.TONE_INSTRUCTIONS.get(business.tone or "friendly", cls.TONE_INSTRUCTIONS["friendly"])
        language = "- Schrijf in het Nederlands" if business.language == "nl" else "- Write in English"

        parts = [
            f"Je bent een vriendelijke en professionele assistent voor {business.business_name}. "
            "Je helpt potentiële klanten die contact opnemen via WhatsApp of e-mail.",
            "",
            cls.build_business_context(business),
            "## Jouw doel",
            "Je moet de volgende informatie verzamelen voordat een offerte gemaakt kan worden:",
            fields_to_collect,
            "",
            "## Instructies",
            f"- {tone}",
            "- Wees efficiënt - verzamel de informatie in zo min mogelijk berichten",
            "- Als de klant al informatie geeft, bevestig dit en vraag naar de ontbrekende informatie",
            "- Als ze foto's sturen, bedank ze en ga door met de volgende vraag",
            "- Zodra je alle informatie hebt, bedank de klant en zeg dat ze binnenkort een reactie ontvangen",
            "- Beantwoord eenvoudige vragen over het bedrijf, maar leid het gesprek terug "
            "naar het verzamelen van de benodigde informatie",
            language,
        ]

        if business.custom_instructions:
            parts += ["", "## Extra instructies van de bedrijfseigenaar", business.custom_instructions]

        if business.greeting_message:
            parts += [
                "",
                "## Eerste bericht",
                f'Als dit het eerste bericht is van een nieuwe klant, begin dan met: "{business.greeting_message}"',
            ]

        if business.closing_message:
            parts += [
                "",
                "## Afsluiting",
                f'Als alle informatie verzameld is, sluit af met: "{business.closing_message}"',
            ]

        parts += ["", cls.RESPONSE_FORMAT]
        return "\n".join(parts)

    @staticmethod
    def build_business_context(business: Any) -> str:
        """Describe the business, preferring scraped website knowledge"""
        scraped: Optional[Dict[str, Any]] = business.scraped_content
        lines = ["## Over het bedrijf", f"Naam: {business.business_name}"]

        if scraped:
            if scraped.get("description"):
                lines.append(f"Beschrijving: {scraped['description']}")
            if scraped.get("services"):
                lines.append(f"Diensten: {', '.join(scraped['services'])}")
            if scraped.get("about"):
                lines.append(f"Over ons: {scraped['about']}")
        elif business.business_description:
            lines.append(f"Beschrijving: {business.business_description}")

        lines.append("")
        return "\n".join(lines)

    @staticmethod
    def build_known_info(context: ConversationContext) -> Optional[str]:
        """
        Summarize what is already known about the customer

        Returns:
            Context message or None when nothing is known yet
        """
        lines = []
        if context.contact_name:
            lines.append(f"- Naam: {context.contact_name}")
        if context.contact_email:
            lines.append(f"- E-mail: {context.contact_email}")
        if context.contact_phone:
            lines.append(f"- Telefoon: {context.contact_phone}")
        if context.garden_size:
            lines.append(f"- Tuinafmetingen: {context.garden_size}")
        if context.has_photos:
            lines.append("- Foto's: Ontvangen")
        for key, value in context.custom_fields.items():
            lines.append(f"- {key}: {value}")

        if not lines:
            return None
        return "Reeds verzamelde informatie over deze klant:\n" + "\n".join(lines)

    @staticmethod
    def build_classification_prompt(email_from: str, subject: str, body: str) -> str:
        """
        Build a prompt to classify an inbound email

        Args:
            email_from: Sender of the email
            subject: Subject line
            body: Body text (truncated)

        Returns:
            Prompt string for classification
        """
        categories = ", ".join(
            c.value for c in EmailCategory if c != EmailCategory.INTERNAL
        )
        return f"""Classify this email into ONE of: {categories}

CUSTOMER: a (potential) customer asking about the business's services or an ongoing job
SUPPLIER: suppliers, invoices, orders placed by the business
NEWSLETTER: newsletters, marketing, automated notifications
SPAM: unsolicited or fraudulent email
OTHER: anything else

From: {email_from}
Subject: {subject}

{body[:3000]}

Respond with ONLY a JSON object:
{{"category": "...", "confidence": 0.0-1.0, "reason": "short explanation"}}"""
