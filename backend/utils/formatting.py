from decimal import Decimal

def format_kes_currency(amount: Decimal) -> str:
    if amount is None:
        return "KES 0.00"
    amount = Decimal(amount)
    return f"KES {amount:,.2f}"

def amount_to_words(n: Decimal) -> str:
    if n is None:
        return ""
    n = Decimal(n)
    if n < 0:
        return "Minus " + amount_to_words(-n)
    if n == 0:
        return "Zero Shillings"

    units = ["", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine", "Ten", "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen", "Seventeen", "Eighteen", "Nineteen"]
    tens = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]

    def convert(num):
        if num < 20:
            return units[num]
        elif num < 100:
            return tens[num // 10] + (" " + units[num % 10] if num % 10 != 0 else "")
        elif num < 1000:
            return units[num // 100] + " Hundred" + (" " + convert(num % 100) if num % 100 != 0 else "")
        elif num < 1000000:
            return convert(num // 1000) + " Thousand" + (" " + convert(num % 1000) if num % 1000 != 0 else "")
        else:
            return convert(num // 1000000) + " Million" + (" " + convert(num % 1000000) if num % 1000000 != 0 else "")

    integer_part = int(n)
    cents = int(((n - integer_part) * 100).quantize(Decimal("1")))

    result = (convert(integer_part) + " Shillings") if integer_part else ""
    if cents > 0:
        result = (result + " and " if result else "") + convert(cents) + " Cents"

    return result
