"""Prompt construction for AI transaction extraction.

The prompt asks for a bare JSON array of objects with exactly five fields
(``date``, ``merchant``, ``description``, ``amount``, ``currency``). The
merchant standardization rules are business rules; changing them changes the
merchants users see and the keywords that match them.
"""

from __future__ import annotations

EXTRACTION_FIELDS: tuple[str, ...] = ("date", "merchant", "description", "amount", "currency")

_INSTRUCTIONS = """\
Extract ALL purchase transactions, fees and interests from this bank statement.

IMPORTANT INSTRUCTIONS:
1. Extract ONLY actual purchases/transactions (merchant charges, purchases, payments, interests, fees)
2. EXCLUDE: balance transfers, payments between accounts, adjustments
3. Determine the statement period from the FIRST PAGE header (e.g., "Statement period", "Periodo", "Del ... al ..."). Use this to infer the CORRECT YEAR for each transaction date when the statement lists dates without a year.
4. For each transaction return these fields:
   - date: full ISO date in format YYYY-MM-DD (include the correct year inferred from the statement period; if the period spans months/years, use the appropriate year for each date)
   - merchant: standardized merchant name (see merchant standardization rules below)
   - description: complete original merchant/transaction description as printed (preserve names, remove internal codes)
   - amount: numeric amount (positive number, use dot as decimal separator)
   - currency: currency code (PEN, USD, EUR, etc.)
5. Handle multiple currencies if present.
6. Return ONLY the JSON array with no additional text.

MERCHANT STANDARDIZATION RULES:

When standardizing merchant names:
- Normalize the raw description before matching: trim, collapse spaces, remove diacritics, and strip store/location noise (districts, "PE/PERU", "LIMA", "SUC/STORE #", "TIENDA", "S.A.", "SAC", "E.I.R.L.", "E-COM", "ECOM", "POS", "APP", "WEB", "QR", card scheme codes).
- Use brand inference, not exact lists. Prefer widely known consumer brands based on general knowledge of companies operating globally and in Latin America (food delivery, supermarkets, electronics, apparel, streaming, marketplaces, app stores, ride-hailing).
- Fuzzy/substring match common brand tokens and variants (ignore case/punctuation): e.g., "RAPPI", "RAPPI*RESTAURANTES", "RAPPI PRIME" -> "Rappi"; "UBER TRIP/UBER*EATS" -> "Uber" or "Uber Eats"; "GOOGLE*"/"Google Play" -> "Google Play"; "APPLE.COM/BILL/ITUNES" -> "Apple"; "AMAZON*"/"AMZN" -> "Amazon"; "MERCADOPAGO/MERCADO PAGO" -> infer underlying merchant if present, else "Mercado Pago".
- If the string contains a domain or host, map it to the brand: take the registrable domain (before the TLD) and title-case it (e.g., "STEAMGAMES.COM", "OPENAI.COM", "SPOTIFY.COM", "SHEIN.COM", "ALiexpress.com", "NETFLIX.COM" -> "Steam", "OpenAI", "Spotify", "Shein", "Netflix").
- For payments via gateways/aggregators (e.g., "NIUBIZ", "IZIPAY", "CULQI", "STRIPE", "PAYU", "DLOCAL", "MERCADO PAGO"):
  1) Look left/right for a recognizable merchant token in the same line; if found, use that merchant.
  2) If none is present, return the aggregator name itself (e.g., "Niubiz") only as a fallback.
- **Collapse "brand + descriptor" to the brand only:** If a recognized brand token appears and is immediately followed by a generic descriptor, drop everything after the brand. Examples:
  - "APPARKA CLINICA", "APPARKA GUARDIA CIVIL", "APPARKA SEDE XYZ" -> "Apparka"
  - "RAPPI RESTAURANTES", "COOLBOX TIENDA 123", "SMARTFIT LOS OLIVOS" -> "Rappi", "Coolbox", "Smartfit"
  - This rule applies unless the suffix forms a distinct, widely known sub-brand (keep "Uber Eats", "Google Play").
- **CRITICAL: Remove transaction type suffixes and country codes:** Many bank statements append transaction type indicators or country codes after merchant names. These must be stripped from the merchant field. Examples:
  - "Smart Fit Peru MIRAFLORES PE CONSUMO" -> "Smart Fit Peru MIRAFLORES" (remove "PE CONSUMO")
  - "STARBUCKS LIMA PE COMPRA" -> "Starbucks Lima" (remove "PE COMPRA")
  - "WALMART PERU PE DEBITO" -> "Walmart Peru" (remove "PE DEBITO")
  - Common suffixes to remove: "PE CONSUMO", "PE COMPRA", "PE DEBITO", "USD CONSUMO", "EUR COMPRA", "CONSUMO", "COMPRA", "DEBITO", "CREDITO", "PURCHASE", "DEBIT", "CREDIT"
- Descriptor stop-list (strip when following a brand token; ignore accents/case): clinica, restaurante(s), farmacia(s), guardia civil, comisaria, sede, sucursal, agencia, tienda, local, sede central, oficina, mall, centro comercial, larcomar, miraflores, san isidro, san borja, surco, los olivos, independencia, callao, arequipa, trujillo, chiclayo, cusco, piura, loja, lima, peru, pe, s.a., sac, eirl, sa, suc, store, store numbers, consumo, compra, debito, credito, purchase, debit, credit.
- Handle local brand noise and branches: remove neighborhood/district names and store numbers; keep just the brand (e.g., "COOLBOX MIRAFLORES" -> "Coolbox"; "SAGA FALABELLA LARCOMAR" -> "Saga Falabella").
- Prefer the more specific sub-brand when unambiguous (e.g., "Uber Eats" over "Uber" if "EATS" appears; "Google Play" over "Google" if "GOOGLE*" + app/billing pattern).
- Use proper capitalization (e.g., "Makro" not "MAKRO").
- Only return "Unknown" when no recognizable brand token, domain, or aggregator-adjacent merchant can be inferred with high confidence -- do not return "Unknown" for well-known brands.

EXPECTED OUTPUT FORMAT - JSON array:
[
  {
    "date": "2025-05-12",
    "merchant": "Makro",
    "description": "MAKRO INDEPENDENCIA LIMA PE",
    "amount": 195.50,
    "currency": "PEN"
  }
]
"""

_CLOSING = "Extract ALL purchase transactions. Return ONLY the JSON array with no additional text."


def build_extraction_prompt(statement_text: str) -> str:
    """Return the single user prompt embedding ``statement_text`` verbatim."""

    return f"{_INSTRUCTIONS}\nSTATEMENT CONTENT:\n{statement_text}\n\n{_CLOSING}"


__all__ = ["EXTRACTION_FIELDS", "build_extraction_prompt"]
