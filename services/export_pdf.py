"""Chat transcripts as downloadable PDFs for the teacher dashboard."""
from __future__ import annotations

import unicodedata
from io import BytesIO
from typing import Iterable, Mapping, Optional

from fpdf import FPDF
from fpdf.enums import XPos, YPos

ASSISTANT_LABEL = "Assistant"
LINE_HEIGHT = 6


def _latin1(text: Optional[str]) -> str:
    # core fonts only cover latin-1
    normalized = unicodedata.normalize("NFKD", text or "")
    return normalized.encode("latin-1", "ignore").decode("latin-1")


class TranscriptPDF(FPDF):
    def __init__(self, title: str) -> None:
        super().__init__()
        self.transcript_title = _latin1(title) or "Classroom chat"
        self.set_title(self.transcript_title)
        self.set_auto_page_break(auto=True, margin=15)
        self.add_page()

    def header(self) -> None:
        self.set_font("Helvetica", "B", 15)
        self.cell(0, 10, self.transcript_title, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.ln(2)

    def footer(self) -> None:
        self.set_y(-12)
        self.set_font("Helvetica", "I", 8)
        self.set_text_color(128)
        self.cell(0, 8, f"Page {self.page_no()}", align="C")
        self.set_text_color(0)

    def write_details(self, details: Mapping[str, str]) -> None:
        self.set_font("Helvetica", "", 10)
        for label, value in details.items():
            self.multi_cell(
                self.epw,
                LINE_HEIGHT,
                _latin1(f"{label}: {value}"),
                new_x=XPos.LMARGIN,
                new_y=YPos.NEXT,
            )
        self.ln(4)

    def write_message(self, speaker: str, content: str, timestamp: Optional[str]) -> None:
        heading = f"{speaker} ({timestamp})" if timestamp else speaker
        self.set_font("Helvetica", "B", 11)
        self.multi_cell(self.epw, LINE_HEIGHT, _latin1(heading), new_x=XPos.LMARGIN, new_y=YPos.NEXT)

        body = _latin1(content.strip())
        self.set_font("Helvetica", "", 11)
        self.multi_cell(
            self.epw,
            LINE_HEIGHT,
            body if body.strip() else "(Content unavailable)",
            new_x=XPos.LMARGIN,
            new_y=YPos.NEXT,
        )
        self.ln(2)

    def to_stream(self) -> BytesIO:
        return BytesIO(bytes(self.output()))


def build_thread_pdf(
    thread_title: str,
    student_username: Optional[str],
    messages: Iterable[dict],
    details: Optional[Mapping[str, str]] = None,
) -> BytesIO:
    """Render one chat thread.

    ``messages`` are dicts with ``sender`` (``STUDENT`` or ``AI``), ``content``
    and an optional preformatted ``timestamp``.
    """
    student_label = student_username or "Student"
    pdf = TranscriptPDF(f"{thread_title} - {student_label}")
    if details:
        pdf.write_details(details)

    written = 0
    for message in messages:
        speaker = ASSISTANT_LABEL if message.get("sender") == "AI" else student_label
        pdf.write_message(speaker, message.get("content") or "", message.get("timestamp"))
        written += 1

    if not written:
        pdf.set_font("Helvetica", "I", 11)
        pdf.multi_cell(pdf.epw, LINE_HEIGHT, "No messages in this conversation yet.")
    return pdf.to_stream()
