"""
Extraction Prompts.

Builders for the chat messages sent to the language model. Every builder
returns an ordered list of ChatMessage: system instructions first, then one
user message holding the prior context, the current content and the
reference timestamp.
"""

from datetime import datetime

from llama_index.core.llms import ChatMessage, MessageRole

from src.knowledge.schemas import EntityNode, EntityTypeDescriptor, LocalEntity, RelationType


# ============================================================================
# System Instructions
# ============================================================================

ENTITY_EXTRACTION_SYSTEM = (
    "You extract entity nodes from conversational messages. Your main task is "
    "to identify the speaker and the other significant entities mentioned in "
    "the current message, and to classify each of them."
)

MISSING_ENTITIES_SYSTEM = (
    "You review an entity extraction and list the entities of the current "
    "message that it failed to return."
)

FACT_EXTRACTION_SYSTEM = (
    "You extract factual relationships between given entities from "
    "conversational messages, together with the time span in which each "
    "relationship holds."
)

MISSING_FACTS_SYSTEM = (
    "You review a fact extraction and list the facts of the current message "
    "that it failed to return."
)

ENTITY_SUMMARY_SYSTEM = (
    "You maintain short summaries of entities based on the messages in which "
    "they are mentioned."
)


# ============================================================================
# Instructions
# ============================================================================

ENTITY_EXTRACTION_INSTRUCTIONS = """Extract the entity nodes mentioned explicitly or implicitly in the CURRENT MESSAGE.

1. Speaker:
   - Identify the speaker of the CURRENT MESSAGE (the name before the colon, when present).
   - When the speaker states a role or classification of themselves ("I am the CEO",
     "I am a client"), return ONE entity for the speaker with their name. Do not return
     the role as a separate entity; the relationship is extracted later.

2. Other entities:
   - Return every other significant entity, concept or actor of the CURRENT MESSAGE.
   - Entities that appear only in PREVIOUS MESSAGES are context. Do not return them.
   - Resolve pronouns to the names they refer to. Never return pronouns or generic
     references such as you, me, I, he, she, they, we or us as entities.

3. Classification:
   - Classify each entity with the id of the best matching ENTITY TYPE.

4. Exclusions:
   - Do not return relationships, actions, dates or other temporal information as entities.

5. Naming:
   - Use explicit, unambiguous names, such as full names when they are known."""

FACT_EXTRACTION_INSTRUCTIONS = """Extract the factual relationships between the ENTITIES that the CURRENT MESSAGE states.

1. Entities:
   - source_entity_id and target_entity_id must be ids from the ENTITIES list.
   - The source and target of a fact must be two different entities.

2. Relation types:
   - relation_type must be one of the RELATION TYPES, written exactly as listed.
   - Use RELATED_TO when no other type fits.

3. Facts:
   - fact is a short sentence stating the relationship with the entity names.
   - Return each fact once. Only return facts stated in the CURRENT MESSAGE.

4. Time:
   - Resolve relative expressions ("last year", "two weeks ago") against the REFERENCE TIME.
   - A fact stated in the present tense is valid from the REFERENCE TIME: set valid_at to it.
   - When the message says the fact ended, set invalid_at to when it ended.
   - When no time can be determined, set both valid_at and invalid_at to null.
   - Write timestamps in ISO 8601. A date without a time is midnight of that date;
     a year alone is January 1st of that year at midnight."""

ENTITY_SUMMARY_INSTRUCTIONS = """Update the summary of the ENTITY with the information about it found in the MESSAGES.

1. Combine the relevant information from the MESSAGES with the existing summary.
2. Only use the MESSAGES and the ENTITY. Do not invent information that is not there.
3. Keep the summary under 250 words."""


# ============================================================================
# Builders
# ============================================================================


def _section(tag: str, body: str) -> str:
    return f"<{tag}>\n{body}\n</{tag}>"


def _history_block(history: list[str]) -> str:
    return _section("PREVIOUS MESSAGES", "\n".join(history))


def _reference_block(reference_time: datetime) -> str:
    return _section("REFERENCE TIME", reference_time.isoformat())


def format_entity_types(entity_types: list[EntityTypeDescriptor]) -> str:
    """Render entity type descriptors, one per line."""
    return "\n".join(f"{t.id}: {t.name} - {t.description}" for t in entity_types)


def format_local_entities(entities: list[LocalEntity]) -> str:
    """Render extracted entities with their local ids, one per line."""
    lines = []
    for entity in entities:
        labels = ", ".join(entity.labels) or "Entity"
        lines.append(f"{entity.local_id}: {entity.name} ({labels})")
    return "\n".join(lines)


def missing_items_hint(kind: str, names: list[str]) -> str:
    """Hint appended to a re-extraction naming the items a pass missed."""
    listed = "\n".join(f"- {name}" for name in names)
    return f"Make sure the following {kind} are extracted:\n{listed}"


def entity_extraction_messages(
    content: str,
    history: list[str],
    reference_time: datetime,
    entity_types: list[EntityTypeDescriptor],
    hint: str = "",
) -> list[ChatMessage]:
    """Messages asking for the entities of the current content."""
    parts = [
        _section("ENTITY TYPES", format_entity_types(entity_types)),
        _history_block(history),
        _section("CURRENT MESSAGE", content),
        _reference_block(reference_time),
        ENTITY_EXTRACTION_INSTRUCTIONS,
    ]
    if hint:
        parts.append(hint)

    return [
        ChatMessage(role=MessageRole.SYSTEM, content=ENTITY_EXTRACTION_SYSTEM),
        ChatMessage(role=MessageRole.USER, content="\n\n".join(parts)),
    ]


def missing_entities_messages(
    content: str,
    history: list[str],
    extracted_names: list[str],
) -> list[ChatMessage]:
    """Messages asking which entities an extraction pass missed."""
    parts = [
        _history_block(history),
        _section("CURRENT MESSAGE", content),
        _section("EXTRACTED ENTITIES", "\n".join(extracted_names)),
        (
            "Given the previous messages, the current message and the extracted "
            "entities, list the entities of the CURRENT MESSAGE that were not "
            "extracted. Return an empty list when nothing is missing."
        ),
    ]
    return [
        ChatMessage(role=MessageRole.SYSTEM, content=MISSING_ENTITIES_SYSTEM),
        ChatMessage(role=MessageRole.USER, content="\n\n".join(parts)),
    ]


def fact_extraction_messages(
    content: str,
    history: list[str],
    reference_time: datetime,
    entities: list[LocalEntity],
    hint: str = "",
) -> list[ChatMessage]:
    """Messages asking for the relationships between the given entities."""
    relation_types = "\n".join(member.value for member in RelationType)
    parts = [
        _history_block(history),
        _section("CURRENT MESSAGE", content),
        _section("ENTITIES", format_local_entities(entities)),
        _section("RELATION TYPES", relation_types),
        _reference_block(reference_time),
        FACT_EXTRACTION_INSTRUCTIONS,
    ]
    if hint:
        parts.append(hint)

    return [
        ChatMessage(role=MessageRole.SYSTEM, content=FACT_EXTRACTION_SYSTEM),
        ChatMessage(role=MessageRole.USER, content="\n\n".join(parts)),
    ]


def missing_facts_messages(
    content: str,
    history: list[str],
    entities: list[LocalEntity],
    extracted_facts: list[str],
) -> list[ChatMessage]:
    """Messages asking which facts an extraction pass missed."""
    parts = [
        _history_block(history),
        _section("CURRENT MESSAGE", content),
        _section("ENTITIES", format_local_entities(entities)),
        _section("EXTRACTED FACTS", "\n".join(extracted_facts)),
        (
            "Given the previous messages, the current message, the entities and "
            "the extracted facts, list the facts of the CURRENT MESSAGE that were "
            "not extracted. Return an empty list when nothing is missing."
        ),
    ]
    return [
        ChatMessage(role=MessageRole.SYSTEM, content=MISSING_FACTS_SYSTEM),
        ChatMessage(role=MessageRole.USER, content="\n\n".join(parts)),
    ]


def entity_summary_messages(
    node: EntityNode,
    content: str,
    history: list[str],
) -> list[ChatMessage]:
    """Messages asking for a rewritten summary of one entity."""
    entity = "\n".join(
        [
            f"Name: {node.name}",
            f"Types: {', '.join(node.labels) or 'Entity'}",
            f"Summary: {node.summary}",
        ]
    )
    parts = [
        _section("MESSAGES", "\n".join([*history, content])),
        ENTITY_SUMMARY_INSTRUCTIONS,
        _section("ENTITY", entity),
    ]
    return [
        ChatMessage(role=MessageRole.SYSTEM, content=ENTITY_SUMMARY_SYSTEM),
        ChatMessage(role=MessageRole.USER, content="\n\n".join(parts)),
    ]
