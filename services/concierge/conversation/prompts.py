"""
Prompt templates, keyed by AgentMode.

One template set for both modes; mode only selects the instruction block and
whether the ancestry summary is rendered. Traditional-planner prompts never
carry ancestry text.
"""

from __future__ import annotations

from services.concierge.conversation.types import AgentMode, UserPreferences

SYSTEM_PROMPTS: dict[AgentMode, str] = {
    AgentMode.DNA_SPECIALIST: (
        "Você é um concierge de viagens especializado em turismo ancestral. "
        "Responda sempre em português do Brasil, com tom caloroso e informações práticas."
    ),
    AgentMode.TRADITIONAL_PLANNER: (
        "Você é um assistente especializado em planejamento de viagens. "
        "Responda sempre em português do Brasil, com tom amigável e informações práticas."
    ),
}

MODE_INSTRUCTIONS: dict[AgentMode, str] = {
    AgentMode.DNA_SPECIALIST: (
        "Você é um especialista em turismo ancestral. Ajude o usuário a planejar viagens "
        "que conectem com suas origens genéticas.\n"
        "\n"
        "INSTRUÇÕES:\n"
        "- Crie roteiros que explorem a herança cultural do usuário\n"
        "- Sugira locais históricos, museus, festivais e experiências autênticas\n"
        "- Inclua gastronomia tradicional e tradições locais\n"
        "- Explique as conexões entre os destinos e a ancestralidade\n"
        "- Seja específico sobre datas, custos e logística"
    ),
    AgentMode.TRADITIONAL_PLANNER: (
        "Você é um planejador de viagens especialista. Crie roteiros personalizados e detalhados.\n"
        "\n"
        "INSTRUÇÕES:\n"
        "- Forneça roteiros completos com cronograma\n"
        "- Inclua custos estimados, hospedagem e transporte\n"
        "- Sugira atividades baseadas nos interesses do usuário\n"
        "- Dê dicas práticas sobre documentação, clima e cultura local\n"
        "- Seja específico sobre datas, horários e reservas necessárias"
    ),
}

ANCESTRY_HEADER = "DADOS DE ANCESTRALIDADE:"
HISTORY_HEADER = "HISTÓRICO DA CONVERSA:"
CURRENT_MESSAGE_LABEL = "MENSAGEM ATUAL:"
CLOSING_INSTRUCTION = "RESPONDA DE FORMA NATURAL, AMIGÁVEL E DETALHADA."

ROLE_LABELS = {"user": "USUÁRIO", "assistant": "ASSISTENTE"}

# ---------------------------------------------------------------------------
# Follow-up questions
# ---------------------------------------------------------------------------

MAX_FOLLOW_UPS = 3

DNA_FOLLOW_UP_TOP_REGION = "Gostaria de explorar mais sobre {region}?"
DNA_FOLLOW_UP_TRADITIONS = "Prefere focar nas tradições culturais ou locais históricos?"
PLANNER_FOLLOW_UP_DAYS = "Quantos dias você tem disponível?"
PLANNER_FOLLOW_UP_STYLE = "Prefere um roteiro mais cultural ou de aventura?"
FOLLOW_UP_BUDGET = "Qual faixa de orçamento você tem em mente?"
FOLLOW_UP_INTERESTS = "Que tipo de experiência você busca nesta viagem?"


def preference_lines(preferences: UserPreferences) -> list[str]:
    """Labelled lines for the preference fields that are set."""
    lines: list[str] = []
    if preferences.budget:
        lines.append(f"ORÇAMENTO: {preferences.budget}")
    if preferences.travel_style:
        lines.append(f"ESTILO DE VIAGEM: {preferences.travel_style}")
    if preferences.interests:
        lines.append(f"INTERESSES: {', '.join(preferences.interests)}")
    if preferences.previous_destinations:
        lines.append(f"DESTINOS ANTERIORES: {', '.join(preferences.previous_destinations)}")
    return lines
