from ocepa_tutor.config import DEFAULT_TITLE
from ocepa_tutor.models import Conversation, Message, Registry, Role, derive_title


class TestDeriveTitle:
    def test_long_text_is_cut_with_ellipsis(self):
        text = "What is mitosis and how does it differ from meiosis in plant cells found in Uganda"
        assert derive_title(text) == text[:35] + "..."
        assert len(derive_title(text)) == 38

    def test_short_text_is_kept_whole(self):
        assert derive_title("Photosynth") == "Photosynth"

    def test_exactly_35_chars_has_no_ellipsis(self):
        text = "x" * 35
        assert derive_title(text) == text


class TestConversation:
    def test_defaults(self):
        conv = Conversation(id="chat-1")
        assert conv.title == DEFAULT_TITLE
        assert conv.messages == ()

    def test_first_user_message_sets_title(self):
        conv = Conversation(id="chat-1").append(Message(role=Role.USER, text="Define osmosis"))
        assert conv.title == "Define osmosis"

    def test_later_messages_keep_title(self):
        conv = Conversation(id="chat-1").append(Message(role=Role.USER, text="Define osmosis"))
        conv = conv.append(Message(role=Role.MODEL, text="Osmosis is..."))
        conv = conv.append(Message(role=Role.USER, text="And diffusion?"))
        assert conv.title == "Define osmosis"

    def test_extend_reply_only_touches_trailing_model_message(self):
        conv = Conversation(id="chat-1")
        conv = conv.append(Message(role=Role.USER, text="hi"))
        conv = conv.append(Message(role=Role.MODEL, text="Hel"))
        conv = conv.extend_reply("lo")
        assert [m.text for m in conv.messages] == ["hi", "Hello"]

    def test_extend_reply_without_model_message(self):
        conv = Conversation(id="chat-1").append(Message(role=Role.USER, text="hi"))
        assert conv.extend_reply("x") is None

    def test_role_parses_from_wire_value(self):
        msg = Message.model_validate({"role": "model", "text": "ok"})
        assert msg.role is Role.MODEL
        assert msg.model_dump(mode="json") == {"role": "model", "text": "ok"}


class TestRegistrySnapshot:
    def test_stale_active_pointer_reads_as_none(self):
        state = Registry(conversations=(Conversation(id="a"),), active_id="gone")
        assert state.active is None

    def test_with_conversation_unknown_id_is_identity(self):
        state = Registry(conversations=(Conversation(id="a"),), active_id="a")
        assert state.with_conversation("b", lambda c: c.renamed("x")) is state

    def test_with_conversation_keeps_order(self):
        state = Registry(
            conversations=(Conversation(id="a"), Conversation(id="b"), Conversation(id="c"))
        )
        updated = state.with_conversation("b", lambda c: c.renamed("Bee"))
        assert [c.id for c in updated.conversations] == ["a", "b", "c"]
        assert updated.find("b").title == "Bee"
