"""
Signature receipt rendering for PetitionSeal.

A receipt is a one-page PDF certificate that restates what was signed and
carries the audit hash with its public verification link. Receipts are a
courtesy: the signature record is authoritative and is committed before a
receipt is ever rendered.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from io import BytesIO

from .models import DrawnSignature, Petition, SignatureRecord, TypedSignature
from .util import mask_email, utc_now

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
IMAGE_UNAVAILABLE = "[Signature image not available]"


@dataclass(frozen=True)
class ReceiptData:
    record: SignatureRecord
    petition: Petition
    verify_url: str


class ReceiptRenderer(ABC):
    """Abstract interface for receipt rendering."""

    mime = PDF_MIME

    @abstractmethod
    def render(self, data: ReceiptData) -> bytes:
        pass


class PdfReceiptRenderer(ReceiptRenderer):
    """
    Render receipts with reportlab.

    Requires: reportlab
    """

    def __init__(self, margin: float = 50):
        self.margin = margin

    def render(self, data: ReceiptData) -> bytes:
        from reportlab.lib.pagesizes import letter
        from reportlab.pdfgen import canvas

        record, petition = data.record, data.petition
        signer = record.signer
        buf = BytesIO()
        c = canvas.Canvas(buf, pagesize=letter)
        c.setTitle("Petition Signature Certificate")
        x = self.margin
        y = letter[1] - 42

        def line(text, size=12, font="Helvetica", gap=20, grey=False):
            nonlocal y
            c.setFont(font, size)
            c.setFillGray(0.5 if grey else 0)
            c.drawString(x, y, text)
            y -= gap

        line("PETITION SIGNATURE CERTIFICATE", 18, "Helvetica-Bold", 40)

        line("PETITION DETAILS", 14, "Helvetica-Bold", 25)
        line(f"Title: {petition.title}")
        line(f"Version: {petition.version}")
        line(f"Petition Hash: {record.petition_hash}", 10, gap=35)

        line("SIGNER INFORMATION", 14, "Helvetica-Bold", 25)
        line(f"Name: {signer.first_name} {signer.last_name}")
        line(f"Email: {mask_email(signer.email)}")
        if signer.location:
            line(f"Location: {signer.location}")
        line(f"Signed: {record.created_at}")
        method = "Hand-drawn signature" if record.method == "drawn" else "Typed name"
        line(f"Method: {method}", gap=35)

        line("SIGNATURE", 14, "Helvetica-Bold", 25)
        if isinstance(record.signature, DrawnSignature):
            height = self._draw_image(c, record.signature.image, x, y)
            if height:
                y -= height + 20
            else:
                line(IMAGE_UNAVAILABLE, 10, gap=35, grey=True)
        elif isinstance(record.signature, TypedSignature):
            line(record.signature.text, 16, "Helvetica-Bold", 35)

        line("VERIFICATION DETAILS", 14, "Helvetica-Bold", 25)
        line(f"Signature ID: {record.id}", 10, gap=15)
        line(f"Signature Hash: {record.signature_image_hash}", 10, gap=15)
        line(f"Audit Hash: {record.audit_hash}", 10, gap=15)
        line(f"IP Address: {record.ip}", 10, gap=15)
        line(f"User Agent: {record.user_agent[:80]}", 8, gap=25)

        line("VERIFICATION", 14, "Helvetica-Bold", 25)
        line("Verify this signature at:", gap=15)
        c.setFillColorRGB(0, 0, 0.8)
        c.setFont("Helvetica", 10)
        c.drawString(x, y, data.verify_url)
        y -= 30

        line("This certificate was generated automatically and serves as proof of "
             "signature submission.", 10, gap=15, grey=True)
        line(f"Generated: {utc_now().strftime('%Y-%m-%d %H:%M:%S')} UTC", 10, grey=True)

        c.showPage()
        c.save()
        return buf.getvalue()

    @staticmethod
    def _draw_image(c, image: bytes, x: float, top: float) -> float:
        """Draw the signature at half scale below ``top``. Returns its height, 0 if it could not be embedded."""
        from reportlab.lib.utils import ImageReader

        try:
            reader = ImageReader(BytesIO(image))
            width, height = reader.getSize()
            width, height = width * 0.5, height * 0.5
            c.drawImage(reader, x, top - height, width=width, height=height, mask="auto")
            return height
        except Exception as e:
            logger.warning("Could not embed signature image: %s", e)
            return 0
