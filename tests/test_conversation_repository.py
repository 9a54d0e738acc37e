from decimal import Decimal

import pytest

from insight.models import MessageRole, MessageType
from insight.repositories import ConversationNotFoundError


@pytest.mark.asyncio
async def test_create_and_get_conversation(repository):
    created = await repository.create_conversation("user-1", "Top products", {"source": "web"})

    fetched = await repository.get_conversation(created.id, "user-1")

    assert fetched.id == created.id
    assert fetched.title == "Top products"
    assert fetched.total_tokens == 0
    assert fetched.extra_metadata == {"source": "web"}


@pytest.mark.asyncio
async def test_other_users_conversation_is_not_found(repository):
    created = await repository.create_conversation("user-1", "Private")

    with pytest.raises(ConversationNotFoundError):
        await repository.get_conversation(created.id, "user-2")


@pytest.mark.asyncio
async def test_unknown_conversation_is_not_found(repository):
    with pytest.raises(ConversationNotFoundError) as exc_info:
        await repository.get_conversation("missing", "user-1")

    assert exc_info.value.conversation_id == "missing"


@pytest.mark.asyncio
async def test_totals_equal_sum_of_messages(repository):
    conversation = await repository.create_conversation("user-1", "Revenue")

    await repository.add_message(conversation.id, MessageRole.USER, "Revenue last month?")
    await repository.add_message(
        conversation.id, MessageRole.ASSISTANT, "Revenue was $10k",
        type=MessageType.DATA_RESULT,
        prompt_tokens=900, completion_tokens=100, total_tokens=1000,
        cost=Decimal("0.0021234"),
        sql_query="SELECT SUM(total_amount) FROM orders LIMIT 1",
        sql_result=[{"sum": 10000}],
        processing_time=850,
    )
    await repository.add_message(
        conversation.id, MessageRole.ASSISTANT, "Anything else?",
        prompt_tokens=40, completion_tokens=10, total_tokens=50,
        cost=Decimal("0.000015"),
    )

    refreshed = await repository.get_conversation(conversation.id, "user-1")
    messages = await repository.get_messages(conversation.id)

    assert refreshed.total_tokens == sum(m.total_tokens for m in messages) == 1050
    assert Decimal(str(refreshed.total_cost)) == Decimal("0.002138")
    assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT, MessageRole.ASSISTANT]
    assert messages[1].sql_result == [{"sum": 10000}]
    assert messages[1].type == MessageType.DATA_RESULT


@pytest.mark.asyncio
async def test_list_puts_pinned_first_and_hides_other_users(repository):
    older = await repository.create_conversation("user-1", "Older")
    newer = await repository.create_conversation("user-1", "Newer")
    await repository.create_conversation("user-2", "Someone else's")

    await repository.toggle_pin(older.id, "user-1")
    await repository.rename_conversation(newer.id, "user-1", "Newest")

    conversations = await repository.list_conversations("user-1")

    assert [c.title for c in conversations] == ["Older", "Newest"]
    assert conversations[0].is_pinned


@pytest.mark.asyncio
async def test_toggle_pin_twice_unpins(repository):
    conversation = await repository.create_conversation("user-1", "Pinned?")

    assert (await repository.toggle_pin(conversation.id, "user-1")).is_pinned
    assert not (await repository.toggle_pin(conversation.id, "user-1")).is_pinned


@pytest.mark.asyncio
async def test_soft_delete_hides_conversation(repository):
    conversation = await repository.create_conversation("user-1", "Temporary")

    await repository.delete_conversation(conversation.id, "user-1")

    with pytest.raises(ConversationNotFoundError):
        await repository.get_conversation(conversation.id, "user-1")
    assert await repository.list_conversations("user-1") == []


@pytest.mark.asyncio
async def test_stats(repository):
    conversation = await repository.create_conversation("user-1", "Stats")
    await repository.add_message(conversation.id, MessageRole.USER, "q")
    await repository.add_message(
        conversation.id, MessageRole.ASSISTANT, "a",
        total_tokens=300, cost=Decimal("0.001"), processing_time=400,
    )
    await repository.add_message(
        conversation.id, MessageRole.ASSISTANT, "b",
        total_tokens=200, cost=Decimal("0.002"), processing_time=600,
    )

    stats = await repository.get_stats(conversation.id, "user-1")

    assert stats["message_count"] == 3
    assert stats["total_tokens"] == 500
    assert stats["total_cost"] == Decimal("0.003000")
    assert stats["average_processing_time"] == 500.0
