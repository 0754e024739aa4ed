"""Email bodies for booking confirmations and cancellations."""

from html import escape

DEFAULT_LESSON_LABEL = 'Lesson'


def booking_confirmation_message(recipient_name: str, lesson_date: str, lesson_time: str, lesson_type: str | None):
    lesson = lesson_type or DEFAULT_LESSON_LABEL
    subject = f'Lesson booked: {lesson_date} {lesson_time}'
    text = (
        f'Hello {recipient_name},\n\n'
        f'Your lesson has been booked for {lesson_date} at {lesson_time}.\n\n'
        f'Details:\n- Lesson: {lesson}\n\n'
        'See you then.'
    )
    html = (
        f'<p>Hello {escape(recipient_name)},</p>'
        f'<p>Your lesson has been booked for <strong>{escape(lesson_date)} at {escape(lesson_time)}</strong>.</p>'
        f'<p><strong>Lesson:</strong> {escape(lesson)}</p>'
        '<p>See you then.</p>'
    )
    return subject, text, html


def booking_cancellation_message(recipient_name: str, lesson_date: str, lesson_time: str, reason: str | None = None):
    subject = f'Lesson cancelled: {lesson_date} {lesson_time}'
    text = f'Hello {recipient_name},\n\nYour lesson scheduled for {lesson_date} at {lesson_time} has been cancelled.'
    html = (
        f'<p>Hello {escape(recipient_name)},</p>'
        f'<p>Your lesson scheduled for <strong>{escape(lesson_date)} at {escape(lesson_time)}</strong> '
        'has been cancelled.</p>'
    )
    if reason:
        text += f'\n\nReason: {reason}'
        html += f'<p><strong>Reason:</strong> {escape(reason)}</p>'
    text += '\n\nWe apologise for the inconvenience.'
    html += '<p>We apologise for the inconvenience.</p>'
    return subject, text, html
