"""
Unit tests for the summary-buffer conversation memory.
"""

import pytest
from conftest import WordCounter

from deskchat.models.chat import Conversation, GroundedAnswer, SourceExcerpt, Turn
from deskchat.services.memory import ContextMemory


class RecordingSummarizer:
    def __init__(self, summary="Ils ont parlé de Python."):
        self.summary = summary
        self.prompts = []

    async def __call__(self, messages):
        self.prompts.append(messages[-1]["content"])
        return self.summary


@pytest.fixture
def conversation():
    return Conversation(
        id="c1",
        title="Bonjour",
        model_id="gemma2:2b",
        content=[
            Turn(role="user", content="Bonjour"),
            Turn(role="assistant", content="Salut! Comment puis-je aider?"),
            Turn(role="user", content="Quoi de neuf?"),
            Turn(
                role="assistant",
                content=GroundedAnswer(
                    answer="Rien de spécial aujourd'hui.",
                    context=[SourceExcerpt(content="...", source="example.com")],
                    input="Quoi de neuf?",
                ),
            ),
        ],
    )


def test_rehydrate_replays_turns_in_order(conversation):
    memory = ContextMemory.rehydrate(conversation, token_counter=WordCounter())
    assert [m["role"] for m in memory.messages] == ["user", "assistant", "user", "assistant"]
    assert memory.messages[0]["content"] == "Bonjour"


def test_grounded_turn_replays_only_the_answer(conversation):
    memory = ContextMemory.rehydrate(conversation, token_counter=WordCounter())
    assert memory.messages[-1]["content"] == "Rien de spécial aujourd'hui."


@pytest.mark.asyncio
async def test_within_budget_keeps_full_transcript(conversation):
    summarizer = RecordingSummarizer()
    memory = ContextMemory.rehydrate(conversation, max_tokens=2000, token_counter=WordCounter())

    context = await memory.as_prompt_context(summarizer)

    assert summarizer.prompts == []
    assert len(context) == 4
    assert all(m["role"] != "system" for m in context)


@pytest.mark.asyncio
async def test_over_budget_folds_oldest_into_summary(conversation):
    """Older messages are summarized before leaving the transcript."""
    summarizer = RecordingSummarizer()
    # Each message costs its word count plus 4; the last two cost 7 and 8.
    memory = ContextMemory.rehydrate(conversation, max_tokens=16, token_counter=WordCounter())

    context = await memory.as_prompt_context(summarizer)

    assert len(summarizer.prompts) == 1
    assert "Human: Bonjour" in summarizer.prompts[0]
    assert "AI: Salut! Comment puis-je aider?" in summarizer.prompts[0]
    assert context[0]["role"] == "system"
    assert "Ils ont parlé de Python." in context[0]["content"]
    assert [m["content"] for m in context[1:]] == [
        "Quoi de neuf?",
        "Rien de spécial aujourd'hui.",
    ]


@pytest.mark.asyncio
async def test_most_recent_message_is_never_pruned():
    summarizer = RecordingSummarizer()
    memory = ContextMemory(max_tokens=1, token_counter=WordCounter())
    memory.add_user_message("un message bien trop long pour le budget")

    context = await memory.as_prompt_context(summarizer)

    assert summarizer.prompts == []
    assert context == [{"role": "user", "content": "un message bien trop long pour le budget"}]


@pytest.mark.asyncio
async def test_summary_is_carried_into_the_next_prune():
    summarizer = RecordingSummarizer(summary="Premier résumé.")
    memory = ContextMemory(max_tokens=10, token_counter=WordCounter())
    for text in ("un deux trois", "quatre cinq six", "sept huit neuf"):
        memory.add_user_message(text)
    await memory.prune(summarizer)

    memory.add_ai_message("dix onze douze")
    await memory.prune(summarizer)

    assert "Premier résumé." in summarizer.prompts[-1]


def _section(prompt: str) -> str:
    return prompt.split("New lines of conversation:\n")[1].split("\n\nNew summary:")[0]


@pytest.mark.asyncio
async def test_long_history_is_summarized_in_bounded_batches():
    """No summary prompt grows with the length of the conversation."""
    words = " ".join(f"mot{i}" for i in range(20))
    conversation = Conversation(
        id="long",
        title="Longue",
        model_id="gemma2:2b",
        content=[
            Turn(role="user" if i % 2 == 0 else "assistant", content=words) for i in range(2000)
        ],
    )
    counter = WordCounter()
    summarizer = RecordingSummarizer()
    memory = ContextMemory.rehydrate(conversation, max_tokens=100, token_counter=counter)

    context = await memory.as_prompt_context(summarizer)

    assert len(summarizer.prompts) > 1
    assert all(counter.count_tokens(_section(p)) <= 100 for p in summarizer.prompts)
    assert counter.count_messages_tokens(context[1:]) <= 100
    assert context[-1]["content"] == words
