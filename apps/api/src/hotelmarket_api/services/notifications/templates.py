"""Notification templates for loyalty events."""

from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Sequence

from hotelmarket_api.services.loyalty.events import MemberEnrolled, PointsExpired, RewardRedeemed, TierChanged


@dataclass(slots=True)
class RenderedTemplate:
    subject: str
    text_body: str
    html_body: str

    @property
    def sms_body(self) -> str:
        """Single-paragraph variant for SMS / WhatsApp."""

        paragraphs = [line for line in self.text_body.split("\n") if line.strip()]
        return paragraphs[1] if len(paragraphs) > 1 else self.subject


def _greeting(contact_name: str | None) -> str:
    return f"Hi {contact_name}," if contact_name else "Hi there,"


def _render(subject: str, greeting: str, paragraphs: Sequence[str], *, bullets: Sequence[str] = ()) -> RenderedTemplate:
    text_lines = [greeting, ""]
    for paragraph in paragraphs:
        text_lines.extend([paragraph, ""])
    if bullets:
        text_lines.extend(f"- {item}" for item in bullets)
        text_lines.append("")
    text_lines.append("The Hotel Services Team")

    html_paragraphs = "".join(f"<p>{html.escape(paragraph)}</p>" for paragraph in paragraphs)
    html_bullets = ""
    if bullets:
        items = "".join(f"<li>{html.escape(item)}</li>" for item in bullets)
        html_bullets = f"<ul>{items}</ul>"
    html_body = f"""<html>
  <body>
    <p>{html.escape(greeting)}</p>
    {html_paragraphs}{html_bullets}
    <p>The Hotel Services Team</p>
  </body>
</html>"""
    return RenderedTemplate(subject=subject, text_body="\n".join(text_lines), html_body=html_body)


def render_member_enrolled(event: MemberEnrolled, *, contact_name: str | None, hotel_name: str) -> RenderedTemplate:
    return _render(
        f"Welcome to the {hotel_name} loyalty program",
        _greeting(contact_name),
        [
            f"You are now a {event.tier} member of the {hotel_name} loyalty program.",
            "Every completed service booking earns points you can redeem on future stays.",
        ],
    )


def render_tier_changed(
    event: TierChanged,
    *,
    contact_name: str | None,
    hotel_name: str,
    benefits: Sequence[str] = (),
) -> RenderedTemplate:
    if event.upgraded:
        subject = f"You've reached {event.new_tier} status at {hotel_name}"
        paragraphs = [
            f"Congratulations! You've moved up from {event.old_tier or 'member'} to the {event.new_tier} tier.",
            "Your new benefits apply to your next booking.",
        ]
    else:
        subject = f"Your {hotel_name} loyalty tier is now {event.new_tier}"
        paragraphs = [
            f"Your membership moved from {event.old_tier or 'member'} to the {event.new_tier} tier ({event.reason.lower()}).",
            "Book another service to earn your way back up.",
        ]
    return _render(subject, _greeting(contact_name), paragraphs, bullets=benefits)


def render_points_expired(event: PointsExpired, *, contact_name: str | None, hotel_name: str) -> RenderedTemplate:
    return _render(
        f"{event.amount} loyalty points expired",
        _greeting(contact_name),
        [
            f"{event.amount} of your {hotel_name} loyalty points reached their expiry date and were removed from your balance.",
            "Points stay valid for a limited time after they are earned, so redeem them early.",
        ],
    )


def render_reward_redeemed(event: RewardRedeemed, *, contact_name: str | None, hotel_name: str) -> RenderedTemplate:
    return _render(
        f"Redemption confirmed: {event.reward_ref}",
        _greeting(contact_name),
        [
            f"You redeemed {event.points} points for {event.reward_ref} (worth {event.value:.2f}) at {hotel_name}.",
            "Show this message at the front desk if asked.",
        ],
    )


__all__ = [
    "RenderedTemplate",
    "render_member_enrolled",
    "render_points_expired",
    "render_reward_redeemed",
    "render_tier_changed",
]
