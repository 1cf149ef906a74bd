"""
Unit tests for the command dispatcher.
"""

import json

import pytest
from conftest import MockLLMService

from deskchat.services.dispatcher import CommandDispatcher
from deskchat.services.registry import Catalog, ToolRegistry


@pytest.fixture
def make_dispatcher(make_engine, store):
    def _make(llm=None):
        catalog = Catalog(models=[{"name": "gemma2:2b"}], templates=[], prompts=[])
        return CommandDispatcher(make_engine(llm=llm), store, ToolRegistry(), catalog)

    return _make


@pytest.mark.asyncio
async def test_create_then_read(make_dispatcher):
    dispatcher = make_dispatcher()

    created = await dispatcher.dispatch(
        {"type": "createConversation", "chatId": "c1", "initialMessage": "Bonjour"}
    )
    read = await dispatcher.dispatch({"type": "readConversation", "chatId": "c1"})

    assert created == {"type": "conversationCreated", "data": {"chatId": "c1"}}
    assert read["type"] == "readConversationResponse"
    assert read["data"]["id"] == "c1"
    assert read["data"]["title"] == "Bonjour"
    assert read["data"]["content"] == []
    assert "modelId" in read["data"] and "lastDate" in read["data"]


@pytest.mark.asyncio
async def test_duplicate_create_is_an_error(make_dispatcher):
    dispatcher = make_dispatcher()
    command = {"type": "createConversation", "chatId": "c1", "initialMessage": "Bonjour"}
    await dispatcher.dispatch(command)

    response = await dispatcher.dispatch(command)

    assert response["type"] == "error"
    assert "c1" in response["message"]


@pytest.mark.asyncio
@pytest.mark.parametrize("command_type", ["teleport", ["sendMessage"], {"a": 1}, None, 3])
async def test_unknown_type(make_dispatcher, command_type):
    response = await make_dispatcher().dispatch({"type": command_type})
    assert response == {"type": "error", "message": "Unknown message type"}


@pytest.mark.asyncio
async def test_missing_field_is_reported(make_dispatcher):
    response = await make_dispatcher().dispatch({"type": "readConversation"})
    assert response["type"] == "error"
    assert response["message"].startswith("Invalid readConversation command")


@pytest.mark.asyncio
async def test_read_unknown_conversation(make_dispatcher):
    response = await make_dispatcher().dispatch({"type": "readConversation", "chatId": "nope"})
    assert response["type"] == "error"


@pytest.mark.asyncio
async def test_invalid_json_frame(make_dispatcher):
    dispatcher = make_dispatcher()
    assert (await dispatcher.handle_text("{oops"))["type"] == "error"
    assert (await dispatcher.handle_text("[1, 2]"))["type"] == "error"


@pytest.mark.asyncio
async def test_send_message_plain(make_dispatcher, store):
    dispatcher = make_dispatcher(MockLLMService(tokens=["Salut!"]))

    response = await dispatcher.handle_text(
        json.dumps({"type": "sendMessage", "chatId": "x", "message": "Bonjour", "tools": []})
    )

    assert response == {"type": "messageResponse", "data": "Salut!"}
    assert len(store.read("x").content) == 2


@pytest.mark.asyncio
async def test_send_message_with_search(make_dispatcher):
    dispatcher = make_dispatcher(MockLLMService(tokens=["Python."]))

    response = await dispatcher.dispatch(
        {"type": "sendMessage", "chatId": "x", "message": "Python?", "tools": ["search"]}
    )

    assert response["type"] == "messageResponse"
    assert response["data"]["answer"] == "Python."
    assert response["data"]["input"] == "Python?"
    assert response["data"]["context"][0]["source"] == "fr.wikipedia.org"


@pytest.mark.asyncio
async def test_generation_failure_becomes_error_event(make_dispatcher):
    dispatcher = make_dispatcher(MockLLMService(error=RuntimeError("boom")))

    response = await dispatcher.dispatch(
        {"type": "sendMessage", "chatId": "x", "message": "Bonjour"}
    )

    assert response == {"type": "error", "message": "boom"}


@pytest.mark.asyncio
async def test_listings(make_dispatcher, store):
    dispatcher = make_dispatcher()
    store.create("a", "Premier")
    store.create("b", "Second")

    conversations = await dispatcher.dispatch({"type": "listConversations"})
    grouped = await dispatcher.dispatch({"type": "getDataChats"})
    models = await dispatcher.dispatch({"type": "listModels"})
    tools = await dispatcher.dispatch({"type": "listTools"})

    assert sorted(c["id"] for c in conversations["data"]) == ["a", "b"]
    assert grouped["data"][0]["label"] == "Aujourd'hui"
    assert len(grouped["data"][0]["conversations"]) == 2
    assert models["data"] == [{"name": "gemma2:2b"}]
    assert [t["name"] for t in tools["data"]] == ["search"]


@pytest.mark.asyncio
async def test_load_conversation(make_dispatcher, store):
    store.create("a", "Premier")

    response = await make_dispatcher().dispatch({"type": "loadConversation", "chatId": "a"})

    assert response == {"type": "conversationLoaded", "data": {"chatId": "a"}}
