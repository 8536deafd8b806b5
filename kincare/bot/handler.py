from loguru import logger
from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes, MessageHandler, filters

from kincare.deps import Container
from kincare.errors import KinCareError
from kincare.interpret.assessment import assess
from kincare.models.schemas import (
    BloodPressure,
    Glucose,
    HelpRequest,
    StatusQuery,
    StructuredReading,
    Symptom,
)

HELP_TEXT = (
    "Namaste! Send me your readings in plain words, English or Hindi.\n\n"
    "Examples:\n"
    '• "BP 130/85"\n'
    '• "mera bp 140 over 90 hai, pulse 76"\n'
    '• "khali pet sugar 95"\n'
    '• "khana khane ke baad sugar 140"\n'
    '• "sir dard ho raha hai"\n\n'
    "Commands:\n"
    "/balance — Show your AI credits\n"
    "/help — Show this message"
)


def _user_id(update: Update) -> str:
    return f"tg:{update.effective_user.id}"


def format_reply(reading: StructuredReading) -> str:
    """Echo text for a reading, with its status band where one applies."""
    assessment = assess(reading)

    if isinstance(reading, BloodPressure):
        lines = ["*Blood Pressure*", f"{reading.systolic}/{reading.diastolic} mmHg"]
        if reading.pulse is not None:
            lines.append(f"Pulse: {reading.pulse} bpm")
        lines.append(f"Status: {assessment.status}")
        if assessment.alert:
            lines.append("_Please keep an eye on this and consult your doctor if it persists._")
        return "\n".join(lines)

    if isinstance(reading, Glucose):
        context = reading.meal_context.replace("_", " ")
        lines = ["*Sugar Reading*", f"{reading.value} mg/dL ({context})", f"Status: {assessment.status}"]
        if assessment.alert:
            lines.append("_Please keep an eye on this and consult your doctor if it persists._")
        return "\n".join(lines)

    if isinstance(reading, Symptom):
        return f"*Symptom noted:* {reading.symptom} ({reading.severity})\nTake care, and tell your doctor if it gets worse."

    if isinstance(reading, StatusQuery):
        return "Your readings summary is available in the app under *History*."

    if isinstance(reading, HelpRequest):
        return HELP_TEXT

    return "Sorry, I couldn't understand that. Try something like \"BP 130/85\" or \"sugar 110 fasting\"."


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /start and /help."""
    await update.message.reply_text(HELP_TEXT)


async def balance_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /balance."""
    container: Container = context.bot_data["container"]
    try:
        balance = container.gate.balance(_user_id(update))
    except KinCareError as e:
        logger.error("Balance lookup failed: {}", e)
        await update.message.reply_text("Couldn't fetch your balance right now. Please try again.")
        return

    if balance.subscription_active:
        await update.message.reply_text(
            f"You're on *{balance.plan_id}* — unlimited AI features until "
            f"{balance.current_period_end:%d %b %Y}.",
            parse_mode="Markdown",
        )
        return
    await update.message.reply_text(f"You have *{balance.balance}* AI credits.", parse_mode="Markdown")


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle incoming text messages through the interpretation pipeline."""
    container: Container = context.bot_data["container"]
    user_text = update.message.text.strip()
    logger.info("Telegram message from {}: {}", _user_id(update), user_text)

    await update.message.chat.send_action("typing")

    try:
        reading = await container.arbiter.interpret_message(user_text)
    except KinCareError as e:
        logger.warning("Could not interpret message: {}", e)
        await update.message.reply_text("Please send a message with your reading.")
        return

    logger.info("Interpreted as {} via {} ({:.2f})", reading.kind, reading.interpreter, reading.confidence)
    await update.message.reply_text(format_reply(reading), parse_mode="Markdown")


def build_bot_app(token: str, container: Container) -> Application:
    """Build and return the Telegram bot application."""
    app = Application.builder().token(token).build()
    app.bot_data["container"] = container

    # Command handlers
    app.add_handler(CommandHandler("start", start_command))
    app.add_handler(CommandHandler("help", start_command))
    app.add_handler(CommandHandler("balance", balance_command))

    # Message handlers
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))

    return app
