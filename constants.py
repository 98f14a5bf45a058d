# constants.py

from models import Command, RelationshipState, ViewKind

# Префикс callback_data для кнопок команд: conn:<command>:<counterparty_id>
CALLBACK_PREFIX = "conn"

# Заголовки вью
VIEW_TITLES = {
    ViewKind.CONNECTIONS: "🤝 Мои связи",
    ViewKind.INVITATIONS: "📥 Входящие приглашения",
    ViewKind.SENT: "📤 Отправленные заявки",
    ViewKind.RECOMMENDATIONS: "✨ Рекомендации",
}

# Что показываем, когда вью пустое
VIEW_EMPTY_TEXT = {
    ViewKind.CONNECTIONS: "Связей пока нет.",
    ViewKind.INVITATIONS: "Новых приглашений нет.",
    ViewKind.SENT: "Висящих заявок нет.",
    ViewKind.RECOMMENDATIONS: "Пока некого порекомендовать. Загляни позже.",
}

STATE_LABELS = {
    RelationshipState.NONE: "нет связи",
    RelationshipState.OUTGOING_PENDING: "⏳ заявка отправлена",
    RelationshipState.INCOMING_PENDING: "📨 ждёт ответа",
    RelationshipState.CONNECTED: "✅ на связи",
    RelationshipState.DECLINED: "🚫 отклонено",
}

# Кнопки: (текст, команда)
COMMAND_BUTTONS = {
    Command.SEND: "🤝 Связаться",
    Command.ACCEPT: "✅ Принять",
    Command.REJECT: "❌ Отклонить",
    Command.WITHDRAW: "↩️ Отозвать",
    Command.REMOVE: "🗑 Удалить",
}

# Какие команды доступны из каждого вью
VIEW_COMMANDS = {
    ViewKind.CONNECTIONS: (Command.REMOVE,),
    ViewKind.INVITATIONS: (Command.ACCEPT, Command.REJECT),
    ViewKind.SENT: (Command.WITHDRAW,),
    ViewKind.RECOMMENDATIONS: (Command.SEND,),
}

# Что пишем после успешной команды
COMMAND_DONE_TEXT = {
    Command.SEND: "Заявка отправлена ✅",
    Command.ACCEPT: "Принято! 🎉",
    Command.REJECT: "Приглашение отклонено",
    Command.WITHDRAW: "Заявка отозвана",
    Command.REMOVE: "Связь удалена",
}

# Сколько карточек максимум в одном сообщении
MAX_ITEMS_PER_MESSAGE = 20
