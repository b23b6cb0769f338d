"""
Project estimate PDF
Renders a client-facing estimate (no internal costs) with reportlab
"""

import io
import logging
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from upkeep.estimates.utils import client_view


def _currency(value) -> str:
    return f"${value:,.2f}"


class EstimatePDF:
    """Build the PDF for one estimate snapshot"""

    def __init__(self, estimate):
        self.data = client_view(estimate)
        self.margin = 0.75 * inch
        self.brand_color = colors.HexColor("#1d4ed8")
        self.dark_gray = colors.HexColor("#1e293b")
        self.light_gray = colors.HexColor("#f1f5f9")

    def _styles(self):
        styles = getSampleStyleSheet()
        return {
            "title": ParagraphStyle(
                "EstimateTitle",
                parent=styles["Heading1"],
                fontSize=20,
                textColor=self.brand_color,
                spaceAfter=12,
            ),
            "heading": ParagraphStyle(
                "EstimateHeading",
                parent=styles["Heading2"],
                fontSize=13,
                textColor=self.dark_gray,
                spaceBefore=14,
                spaceAfter=6,
            ),
            "body": ParagraphStyle(
                "EstimateBody",
                parent=styles["Normal"],
                fontSize=10,
                textColor=self.dark_gray,
                spaceAfter=4,
            ),
        }

    def _line_items_table(self, body_style):
        rows = [["Date", "Service", "Description", "Qty", "Rate", "Amount", "Tax"]]
        for item in self.data["lineItems"]:
            rows.append([
                (item["serviceDate"] or "")[:10],
                item["productService"],
                Paragraph(escape(item["description"] or ""), body_style),
                f"{item['qty']:g}",
                _currency(item["rate"]),
                _currency(item["amount"]),
                _currency(item["taxAmount"]),
            ])
        rows.append(["", "", "", "", "", "Total", _currency(self.data["estimatedPrice"])])
        table = Table(rows, repeatRows=1, colWidths=[0.8 * inch, 1.2 * inch, 2.2 * inch,
                                                     0.5 * inch, 0.8 * inch, 0.8 * inch,
                                                     0.7 * inch])
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), self.brand_color),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("FONTSIZE", (0, 0), (-1, -1), 9),
            ("ALIGN", (3, 1), (-1, -1), "RIGHT"),
            ("ROWBACKGROUNDS", (0, 1), (-1, -2), [colors.white, self.light_gray]),
            ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
            ("LINEABOVE", (0, -1), (-1, -1), 1, self.dark_gray),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ]))
        return table

    def generate(self) -> bytes:
        """Generate PDF and return bytes"""
        logging.info("rendering PDF for estimate %s", self.data["id"])
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=letter,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=f"Estimate - {self.data['title']}",
        )
        styles = self._styles()
        story = [Paragraph(f"Project Estimate #{self.data['id']}", styles["title"]),
                 Paragraph(escape(self.data["title"]), styles["heading"]),
                 Paragraph(escape(self.data["description"]), styles["body"])]

        location = f"Building {self.data['building']}"
        if self.data["apartmentNumber"]:
            location += f", unit {self.data['apartmentNumber']}"
        story.append(Paragraph(escape(location), styles["body"]))
        if self.data["proposedStartDate"]:
            story.append(Paragraph(
                f"Proposed start: {self.data['proposedStartDate'][:10]} "
                f"({self.data['estimatedDuration']} day(s))",
                styles["body"],
            ))
        story.append(Spacer(1, 12))

        if self.data["lineItems"]:
            story.append(self._line_items_table(styles["body"]))
        else:
            story.append(Paragraph(
                f"Total: {_currency(self.data['estimatedPrice'])}", styles["heading"]
            ))

        if self.data["clientNotes"]:
            story.append(Paragraph("Notes", styles["heading"]))
            story.append(Paragraph(escape(self.data["clientNotes"]), styles["body"]))

        doc.build(story)
        return buffer.getvalue()


def render_estimate_pdf(estimate) -> bytes:
    return EstimatePDF(estimate).generate()
