# medscan/reports/pdf.py
"""
PDF rendering for analysis reports.

One fixed template per service: letterhead band, patient block, score,
overall assessment, up to three numbered findings, the captured images
and the recommended-treatment table. Platypus handles pagination when
the treatment table runs long.
"""
from __future__ import annotations

import io
import re
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Dict, Optional, Sequence, Union
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle
from reportlab.lib.units import mm
from reportlab.platypus import (
    HRFlowable,
    Image,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from medscan.intake.schema import (
    DentalAssessment,
    FacialAssessment,
    PatientIntake,
    ServiceType,
)

Assessment = Union[FacialAssessment, DentalAssessment]

# ── Palette ────────────────────────────────────────────────────────────────────
NAVY       = colors.HexColor("#1E3A8A")
MID_GREY   = colors.HexColor("#646464")
LIGHT_GREY = colors.HexColor("#F3F4F6")
DARK_GREY  = colors.HexColor("#222222")
WHITE      = colors.white

HEADER_HEIGHT = 35 * mm
FOOTER_HEIGHT = 8 * mm
MARGIN = 15 * mm
MAX_FINDINGS = 3
MAX_IMAGES = 3


@dataclass(frozen=True)
class Letterhead:
    company_name: str
    service_title: str
    phone: str
    email: str
    address: str
    website: str
    tagline: Optional[str] = None


LETTERHEADS: Dict[ServiceType, Letterhead] = {
    ServiceType.FACIAL: Letterhead(
        company_name="Medzeal",
        service_title="Facial Analysis Report",
        phone="+91 70441 78786",
        email="medzealpcw@gmail.com",
        address="near Bypass Y Junction",
        website="medzeal.in",
    ),
    ServiceType.DENTAL: Letterhead(
        company_name="MEDORA",
        service_title="Dental Analysis Report",
        tagline="From Care to Confidence, Redefining Dental Wellness",
        phone="+91 97690 00093",
        email="medora@gmail.com",
        address="near Bypass Y Junction",
        website="medora.org.in",
    ),
}


def _make_styles() -> Dict[str, ParagraphStyle]:
    return {
        "title":   ParagraphStyle("Title",   fontName="Helvetica-Bold", fontSize=14, textColor=NAVY,      spaceAfter=2),
        "date":    ParagraphStyle("Date",    fontName="Helvetica",      fontSize=9,  textColor=MID_GREY,  spaceAfter=4),
        "section": ParagraphStyle("Section", fontName="Helvetica-Bold", fontSize=10, textColor=NAVY,      spaceBefore=8, spaceAfter=3),
        "body":    ParagraphStyle("Body",    fontName="Helvetica",      fontSize=9,  textColor=DARK_GREY, leading=12),
        "finding": ParagraphStyle("Finding", fontName="Helvetica",      fontSize=9,  textColor=DARK_GREY, leading=12, leftIndent=3 * mm),
        "caption": ParagraphStyle("Caption", fontName="Helvetica",      fontSize=7,  textColor=MID_GREY,  alignment=1),
        "cell":    ParagraphStyle("Cell",    fontName="Helvetica",      fontSize=8,  textColor=DARK_GREY, leading=10),
        "head":    ParagraphStyle("Head",    fontName="Helvetica-Bold", fontSize=8,  textColor=WHITE,     leading=10),
    }


def report_filename(full_name: str, service_type: ServiceType, on: Optional[date] = None) -> str:
    """`{PatientName}_{serviceType}_{yyyy-mm-dd}.pdf`"""
    safe_name = re.sub(r"[\\/:*?\"<>|\x00-\x1f\x7f]+", "", full_name).strip() or "patient"
    day = on or date.today()
    return f"{safe_name}_{service_type.value}_{day.isoformat()}.pdf"


def _draw_letterhead(letterhead: Letterhead):
    def draw(canvas, doc) -> None:
        width, height = A4
        canvas.saveState()

        canvas.setFillColor(NAVY)
        canvas.rect(0, height - HEADER_HEIGHT, width, HEADER_HEIGHT, stroke=0, fill=1)
        canvas.setFillColor(WHITE)
        canvas.setFont("Helvetica-Bold", 22)
        canvas.drawString(MARGIN, height - 15 * mm, letterhead.company_name)
        if letterhead.tagline:
            canvas.setFont("Helvetica-Oblique", 8)
            canvas.drawString(MARGIN, height - 21 * mm, letterhead.tagline)

        canvas.setFont("Helvetica", 8)
        right = width - MARGIN
        for offset, line in enumerate((
            f"Tel: {letterhead.phone}",
            f"Email: {letterhead.email}",
            letterhead.address,
            f"Web: {letterhead.website}",
        )):
            canvas.drawRightString(right, height - (12 + 4 * offset) * mm, line)

        canvas.setFillColor(NAVY)
        canvas.rect(0, 0, width, FOOTER_HEIGHT, stroke=0, fill=1)
        canvas.setFillColor(WHITE)
        canvas.drawCentredString(width / 2, 3 * mm, f"{letterhead.company_name} | {letterhead.website}")

        canvas.restoreState()

    return draw


def _patient_table(intake: PatientIntake, result: Assessment, styles) -> Table:
    kind = "Facial" if intake.service_type is ServiceType.FACIAL else "Dental"
    rows = [
        [
            Paragraph(f"Name: {escape(intake.full_name)}", styles["body"]),
            Paragraph(f"Score: {result.score_label}", styles["body"]),
        ],
        [
            Paragraph(f"Phone: {escape(intake.phone_number)}", styles["body"]),
            Paragraph(f"Type: {kind}", styles["body"]),
        ],
    ]
    t = Table(rows, colWidths=[90 * mm, 90 * mm])
    t.setStyle(TableStyle([
        ("TOPPADDING",    (0, 0), (-1, -1), 1),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 1),
        ("LEFTPADDING",   (0, 0), (-1, -1), 0),
    ]))
    return t


def _image_row(images: Sequence[bytes], styles) -> Table:
    spacing = 5 * mm
    size = (A4[0] - 2 * MARGIN - spacing * (MAX_IMAGES - 1)) / MAX_IMAGES
    pictures = []
    captions = []
    for index, data in enumerate(images[:MAX_IMAGES]):
        pictures.append(Image(io.BytesIO(data), width=size, height=size))
        captions.append(Paragraph(f"Image {index + 1}", styles["caption"]))
    t = Table([pictures, captions], colWidths=[size + spacing] * len(pictures))
    t.setStyle(TableStyle([
        ("ALIGN",        (0, 0), (-1, -1), "LEFT"),
        ("LEFTPADDING",  (0, 0), (-1, -1), 0),
        ("RIGHTPADDING", (0, 0), (-1, -1), spacing),
    ]))
    return t


def _treatment_table(result: Assessment, styles) -> Table:
    rows = [[
        Paragraph("Problem", styles["head"]),
        Paragraph("Description", styles["head"]),
        Paragraph("Suggested Treatment", styles["head"]),
    ]]
    for item in result.detected_problems:
        rows.append([
            Paragraph(escape(item.problem), styles["cell"]),
            Paragraph(escape(item.description), styles["cell"]),
            Paragraph(escape(item.suggested_treatment), styles["cell"]),
        ])
    t = Table(rows, colWidths=[40 * mm, 85 * mm, 55 * mm], repeatRows=1)
    t.setStyle(TableStyle([
        ("BACKGROUND",     (0, 0), (-1, 0), NAVY),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [WHITE, LIGHT_GREY]),
        ("GRID",           (0, 0), (-1, -1), 0.3, MID_GREY),
        ("VALIGN",         (0, 0), (-1, -1), "TOP"),
        ("TOPPADDING",     (0, 0), (-1, -1), 4),
        ("BOTTOMPADDING",  (0, 0), (-1, -1), 4),
    ]))
    return t


def render_report_pdf(
    intake: PatientIntake,
    result: Assessment,
    images: Sequence[bytes] = (),
    report_date: Optional[date] = None,
) -> bytes:
    """
    Build the report and return the PDF bytes.

    Layout errors (an image reportlab cannot read, for instance) are not
    caught here; the caller decides how to surface them.
    """
    letterhead = LETTERHEADS[intake.service_type]
    styles = _make_styles()
    day = report_date or date.today()

    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=HEADER_HEIGHT + 6 * mm,
        bottomMargin=FOOTER_HEIGHT + 6 * mm,
        title=f"{letterhead.service_title} - {intake.full_name}",
        author=letterhead.company_name,
    )

    story = [
        Paragraph(letterhead.service_title, styles["title"]),
        Paragraph(f"Report Date: {day.strftime('%B %d, %Y')}", styles["date"]),
        HRFlowable(width="100%", thickness=0.5, color=NAVY, spaceAfter=4),
        Paragraph("Patient Information", styles["section"]),
        _patient_table(intake, result, styles),
        Paragraph("Overall Assessment", styles["section"]),
        Paragraph(escape(result.overall_assessment), styles["body"]),
    ]

    findings = result.key_problem_points[:MAX_FINDINGS]
    if findings:
        story.append(Paragraph("Key Findings", styles["section"]))
        for index, point in enumerate(findings, start=1):
            story.append(Paragraph(f"{index}. {escape(point)}", styles["finding"]))

    if images:
        story.append(Paragraph("Analysis Images", styles["section"]))
        story.append(_image_row(images, styles))

    if result.detected_problems:
        story.append(Spacer(1, 2 * mm))
        story.append(Paragraph("Recommended Treatment", styles["section"]))
        story.append(_treatment_table(result, styles))

    draw = _draw_letterhead(letterhead)
    doc.build(story, onFirstPage=draw, onLaterPages=draw)
    return buf.getvalue()


def save_report(pdf_bytes: bytes, filename: str, directory: Union[str, Path]) -> Path:
    """Write a rendered report to local disk and return its path."""
    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / filename
    path.write_bytes(pdf_bytes)
    return path
