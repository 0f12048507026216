import base64
from io import BytesIO

import qrcode


class CodeRenderer:
    """Turns a ticket code into the scannable image shown at the door."""

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    def verify_url(self, code: str) -> str:
        return f"{self.base_url}/verify/{code}"

    def png(self, code: str) -> bytes:
        qr = qrcode.QRCode(
            version=1,
            error_correction=qrcode.constants.ERROR_CORRECT_L,
            box_size=10,
            border=4,
        )
        qr.add_data(self.verify_url(code))
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")

        buffered = BytesIO()
        img.save(buffered, "PNG")
        return buffered.getvalue()

    def data_url(self, code: str) -> str:
        b64 = base64.b64encode(self.png(code)).decode("ascii")
        return f"data:image/png;base64,{b64}"
