"""
Sale receipts: a printable text block and a PNG rendition for the
host print dialog. Uses Pillow and python-barcode for the image.
"""
import base64
import io
import logging
import textwrap
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence, Tuple

import barcode
from barcode.writer import ImageWriter
from PIL import Image, ImageDraw, ImageFont

logger = logging.getLogger(__name__)

DEFAULT_HEADER = ('Footsteps Furniture', '123 Furniture Ave, Mukono, Uganda')
# Currencies printed without minor units
ZERO_DECIMAL_CURRENCIES = {'UGX', 'RWF', 'JPY', 'KRW'}


def format_currency(amount, currency: str = 'UGX') -> str:
    """format_currency(Decimal('21600')) -> 'UGX 21,600'"""
    amount = Decimal(amount)
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return f"{currency} {amount:,.0f}"
    return f"{currency} {amount:,.2f}"


@dataclass(frozen=True)
class ReceiptLine:
    description: str
    sku: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal

    def to_dict(self):
        return {
            'description': self.description,
            'sku': self.sku,
            'quantity': self.quantity,
            'unit_price': str(self.unit_price),
            'line_total': str(self.line_total),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            description=data['description'],
            sku=data.get('sku', ''),
            quantity=int(data['quantity']),
            unit_price=Decimal(str(data['unit_price'])),
            line_total=Decimal(str(data['line_total'])),
        )


@dataclass(frozen=True)
class SaleReceipt:
    order_id: int
    order_number: str
    customer: str
    payment_method: str
    lines: Tuple[ReceiptLine, ...]
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    tax_rate: Decimal
    issued_at: datetime
    currency: str = 'UGX'

    @classmethod
    def from_cart(cls, cart, order_id, order_number, payment_method, issued_at, currency='UGX'):
        return cls(
            order_id=order_id,
            order_number=order_number,
            customer=cart.customer,
            payment_method=payment_method,
            lines=tuple(
                ReceiptLine(
                    description=line.item.name,
                    sku=line.item.sku,
                    quantity=line.quantity,
                    unit_price=line.item.unit_price,
                    line_total=line.line_total,
                )
                for line in cart
            ),
            subtotal=cart.subtotal,
            tax=cart.tax,
            total=cart.total,
            tax_rate=cart.tax_rate,
            issued_at=issued_at,
            currency=currency,
        )

    @property
    def payment_method_label(self) -> str:
        return self.payment_method.capitalize()

    def to_dict(self) -> dict:
        return {
            'order_id': self.order_id,
            'order_number': self.order_number,
            'customer': self.customer,
            'payment_method': self.payment_method,
            'lines': [line.to_dict() for line in self.lines],
            'subtotal': str(self.subtotal),
            'tax': str(self.tax),
            'total': str(self.total),
            'tax_rate': str(self.tax_rate),
            'issued_at': self.issued_at.isoformat(),
            'currency': self.currency,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'SaleReceipt':
        return cls(
            order_id=data['order_id'],
            order_number=data['order_number'],
            customer=data['customer'],
            payment_method=data['payment_method'],
            lines=tuple(ReceiptLine.from_dict(entry) for entry in data.get('lines', [])),
            subtotal=Decimal(data['subtotal']),
            tax=Decimal(data['tax']),
            total=Decimal(data['total']),
            tax_rate=Decimal(data['tax_rate']),
            issued_at=datetime.fromisoformat(data['issued_at']),
            currency=data.get('currency', 'UGX'),
        )


def _columns(left: str, right: str, width: int) -> str:
    room = width - len(right) - 1
    if len(left) > room:
        left = left[:max(room, 0)]
    return left + ' ' * (width - len(left) - len(right)) + right


def receipt_lines(receipt: SaleReceipt, width: int = 40,
                  header: Optional[Sequence[str]] = None) -> list:
    """The receipt as a list of lines no wider than ``width``"""
    def money(amount):
        return format_currency(amount, receipt.currency)

    rule = '-' * width
    rate_percent = (receipt.tax_rate * 100).normalize()

    lines = [text.center(width).rstrip() for text in (header or DEFAULT_HEADER)]
    lines.append('Sale Receipt'.center(width).rstrip())
    lines.append(rule)
    lines.extend(textwrap.wrap(f"Date: {receipt.issued_at:%Y-%m-%d %H:%M}", width))
    lines.extend(textwrap.wrap(f"Customer: {receipt.customer}", width))
    lines.extend(textwrap.wrap(f"Transaction ID: {receipt.order_number}", width))
    lines.append(rule)
    for line in receipt.lines:
        lines.extend(textwrap.wrap(line.description, width) or [''])
        lines.append(_columns(
            f"  {line.quantity} x {money(line.unit_price)}", money(line.line_total), width
        ))
    lines.append(rule)
    lines.append(_columns('Subtotal', money(receipt.subtotal), width))
    lines.append(_columns(f"Tax ({rate_percent:f}%)", money(receipt.tax), width))
    lines.append(_columns('TOTAL', money(receipt.total), width))
    lines.append(rule)
    lines.extend(textwrap.wrap(f"Payment Method: {receipt.payment_method_label}", width))
    lines.append('Thank you for your business!'.center(width).rstrip())
    return lines


def render_text(receipt: SaleReceipt, width: int = 40, header: Optional[Sequence[str]] = None) -> str:
    """Printable monospace receipt"""
    return '\n'.join(receipt_lines(receipt, width=width, header=header)) + '\n'


def _load_font(size):
    try:
        return ImageFont.truetype('/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf', size)
    except (OSError, IOError):
        return ImageFont.load_default()


def _barcode_image(value: str):
    code128 = barcode.get_barcode_class('code128')
    instance = code128(value, writer=ImageWriter())
    return instance.render({
        'write_text': False,
        'module_width': 0.3,
        'module_height': 12.0,
        'quiet_zone': 2.0,
        'background': 'white',
        'foreground': 'black',
    })


def render_image(receipt: SaleReceipt, width: int = 40, header: Optional[Sequence[str]] = None,
                 pixel_width: int = 400) -> str:
    """
    Render the receipt as a PNG with a Code128 barcode of the order number.

    Returns:
        Base64-encoded PNG image as data URL string
    """
    font = _load_font(14)
    text_lines = receipt_lines(receipt, width=width, header=header)

    measure = ImageDraw.Draw(Image.new('RGB', (1, 1)))
    bbox = measure.textbbox((0, 0), 'Hg', font=font)
    line_height = (bbox[3] - bbox[1]) + 6
    margin = 10

    try:
        code_img = _barcode_image(receipt.order_number)
        scale = (pixel_width - 2 * margin) / code_img.size[0]
        code_img = code_img.resize(
            (pixel_width - 2 * margin, max(int(code_img.size[1] * scale), 1)),
            Image.Resampling.BILINEAR,
        )
    except Exception as e:
        # The receipt is still usable without the barcode
        logger.error("Barcode generation failed for '%s': %s", receipt.order_number, e)
        code_img = None

    barcode_height = code_img.size[1] + margin if code_img is not None else 0
    height = 2 * margin + line_height * len(text_lines) + barcode_height
    img = Image.new('RGB', (pixel_width, height), color='white')
    draw = ImageDraw.Draw(img)

    y = margin
    for text in text_lines:
        draw.text((margin, y), text, fill='black', font=font)
        y += line_height
    if code_img is not None:
        img.paste(code_img, (margin, y + margin // 2))

    buffer = io.BytesIO()
    img.save(buffer, format='PNG', optimize=True)
    encoded = base64.b64encode(buffer.getvalue()).decode('ascii')
    return f"data:image/png;base64,{encoded}"
