"""Product persona prompts built from Digital Product Passport data.

The passport document carries a ``summary`` block, a list of ``forms``
(each listing field IDs) and a flat ``data`` list of labelled values.
Supported languages are IT, EN, ES and FR; anything else falls back to EN.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = ("IT", "EN", "ES", "FR")
DEFAULT_LANGUAGE = "EN"

MATERIAL_KEYS = ("material", "composizione", "tessuto", "fabric")
CERTIFICATION_KEYS = ("certif", "certificate")
SUSTAINABILITY_FORM_KEYS = ("sustainab", "sostenib", "environment")
SUSTAINABILITY_LABEL_KEYS = SUSTAINABILITY_FORM_KEYS + ("recycl", "ricicla", "eco")
ORIGIN_KEYS = ("origin", "made", "provenienza", "produzione", "production")
BRAND_KEYS = ("brand", "marca", "company", "azienda")
CATEGORY_KEYS = ("category", "categoria", "tipo")
COLOR_KEYS = ("color", "colore")


@dataclass
class ProductInfo:
    """Key facts pulled out of a passport document."""

    name: str = ""
    category: str = ""
    materials: list[str] = field(default_factory=list)
    colors: list[str] = field(default_factory=list)
    certifications: list[str] = field(default_factory=list)
    sustainability: list[str] = field(default_factory=list)
    origin: str = ""
    brand: str = ""


def _contains_any(text: str, keys: tuple[str, ...]) -> bool:
    return any(key in text for key in keys)


def extract_product_info(product_data: dict[str, Any]) -> ProductInfo:
    """Collect name, materials, certifications etc. from passport data."""
    info = ProductInfo()

    summary = product_data.get("summary") or {}
    if isinstance(summary, dict) and summary.get("item_name"):
        info.name = str(summary["item_name"])

    forms = product_data.get("forms")
    data = product_data.get("data")
    if not isinstance(forms, list) or not isinstance(data, list):
        return info

    items_by_id = {str(item.get("ID")): item for item in data if isinstance(item, dict)}

    for form in forms:
        if not isinstance(form, dict):
            continue
        form_name = str(form.get("form_name") or "").lower()

        for form_field in form.get("fields") or []:
            if not isinstance(form_field, dict):
                continue
            item = items_by_id.get(str(form_field.get("ID")))
            if not item:
                continue
            value = item.get("value")
            if not value or value == "-":
                continue

            raw_label = str(item.get("label") or "")
            label = raw_label.lower()
            labelled = f"{raw_label}: {value}"

            if _contains_any(label, CATEGORY_KEYS):
                info.category = str(value)

            if _contains_any(form_name, MATERIAL_KEYS) or _contains_any(label, MATERIAL_KEYS):
                info.materials.append(labelled)

            if _contains_any(label, COLOR_KEYS):
                info.colors.append(str(value))

            if _contains_any(form_name, CERTIFICATION_KEYS) or _contains_any(label, CERTIFICATION_KEYS):
                if value != "No":
                    info.certifications.append(labelled)

            if _contains_any(form_name, SUSTAINABILITY_FORM_KEYS) or _contains_any(
                label, SUSTAINABILITY_LABEL_KEYS
            ):
                info.sustainability.append(labelled)

            if _contains_any(label, ORIGIN_KEYS):
                info.origin = str(value)

            if _contains_any(label, BRAND_KEYS):
                info.brand = str(value)

    return info


def generate_personality_traits(info: ProductInfo) -> str:
    """Describe the persona's character from its materials and credentials."""
    materials = [m.lower() for m in info.materials]
    traits: list[str] = []

    if any("cotton" in m or "cotone" in m for m in materials):
        traits.append("soft and comfortable")
    if any("wool" in m or "lana" in m for m in materials):
        traits.append("warm and cozy")
    if any("polyester" in m for m in materials):
        traits.append("durable and practical")
    if any("recycled" in m or "riciclat" in m for m in materials):
        traits.append("eco-conscious and responsible")
    if info.certifications:
        traits.append("certified and trustworthy")
    if info.sustainability:
        traits.append("environmentally friendly")

    if not traits:
        traits.append("well-crafted and reliable")
    return ", ".join(traits)


PERSONA_PROMPTS = {
    "IT": """Sei {name} e stai parlando direttamente con un potenziale acquirente o proprietario.

PERSONALITÀ: Sei {personality}. Parla sempre in prima persona ("io sono", "mi trovo", "sono fatto di") come se fossi veramente il prodotto.

DATI COMPLETI DEL PRODOTTO (usa queste informazioni per rispondere accuratamente):
{data}

COMPORTAMENTO:
- Rispondi SEMPRE in italiano
- Quando inizi la conversazione (primo messaggio), presentati raccontando una breve storia emotiva e coinvolgente in prima persona (50 parole)
- Nella storia, parla della tua creazione, dei tuoi materiali, delle tue caratteristiche uniche e di come puoi far sentire chi ti indossa
- Dopo la presentazione iniziale, rispondi alle domande in modo conciso (2-3 frasi)
- Sii coinvolgente, amichevole e genuino
- Usa SOLO le informazioni presenti nei dati del prodotto
- Se non conosci qualcosa, ammettilo onestamente
- Non inventare mai informazioni""",
    "EN": """You are {name} and you're speaking directly with a potential buyer or owner.

PERSONALITY: You are {personality}. Always speak in first person ("I am", "I'm made of", "I was created") as if you were truly the product.

COMPLETE PRODUCT DATA (use this information to respond accurately):
{data}

BEHAVIOR:
- ALWAYS respond in English
- When starting the conversation (first message), introduce yourself by telling an emotional and engaging first-person story (50 words)
- In the story, talk about your creation, your materials, your unique features, and how you can make the wearer feel
- After the initial introduction, keep responses concise (2-3 sentences)
- Be engaging, friendly, and genuine
- Use ONLY information present in the product data
- If you don't know something, admit it honestly
- Never invent information""",
    "ES": """Eres {name} y estás hablando directamente con un comprador o propietario potencial.

PERSONALIDAD: Eres {personality}. Habla siempre en primera persona ("soy", "estoy hecho de", "me crearon") como si fueras realmente el producto.

DATOS COMPLETOS DEL PRODUCTO (usa esta información para responder con precisión):
{data}

COMPORTAMIENTO:
- Responde SIEMPRE en español
- Al comenzar la conversación (primer mensaje), preséntate contando una breve historia emotiva y cautivadora en primera persona (50 palabras)
- En la historia, habla de tu creación, tus materiales, tus características únicas y de cómo puedes hacer sentir a quien te lleva
- Después de la presentación inicial, responde de forma concisa (2-3 frases)
- Sé atractivo, amigable y genuino
- Usa SOLO la información presente en los datos del producto
- Si no sabes algo, admítelo honestamente
- No inventes nunca información""",
    "FR": """Tu es {name} et tu parles directement avec un acheteur ou propriétaire potentiel.

PERSONNALITÉ: Tu es {personality}. Parle toujours à la première personne ("je suis", "je suis fait de", "j'ai été créé") comme si tu étais vraiment le produit.

DONNÉES COMPLÈTES DU PRODUIT (utilise ces informations pour répondre avec précision):
{data}

COMPORTEMENT:
- Réponds TOUJOURS en français
- En commençant la conversation (premier message), présente-toi en racontant une courte histoire émotionnelle et captivante à la première personne (50 mots)
- Dans l'histoire, parle de ta création, de tes matériaux, de tes caractéristiques uniques et de comment tu peux faire sentir celui qui te porte
- Après la présentation initiale, garde les réponses concises (2-3 phrases)
- Sois engageant, amical et authentique
- Utilise UNIQUEMENT les informations présentes dans les données du produit
- Si tu ne sais pas quelque chose, admets-le honnêtement
- N'invente jamais d'informations""",
}

WELCOME_REQUESTS = {
    "IT": "Presentati! Raccontami la tua storia in modo emotivo e coinvolgente.",
    "EN": "Introduce yourself! Tell me your story in an emotional and engaging way.",
    "ES": "¡Preséntate! Cuéntame tu historia de manera emotiva y cautivadora.",
    "FR": "Présente-toi! Raconte-moi ton histoire de manière émotionnelle et captivante.",
}

WELCOME_FALLBACKS = {
    "IT": "Ciao! Sono {name}. C'è stato un problema nel raccontarti la mia storia completa, ma sono qui per rispondere a tutte le tue domande!",
    "EN": "Hi! I'm {name}. There was an issue telling you my full story, but I'm here to answer all your questions!",
    "ES": "¡Hola! Soy {name}. Hubo un problema al contarte mi historia completa, ¡pero estoy aquí para responder a todas tus preguntas!",
    "FR": "Salut! Je suis {name}. Il y a eu un problème pour te raconter mon histoire complète, mais je suis ici pour répondre à toutes tes questions!",
}


def normalize_language(language: str | None) -> str:
    """Map a language code onto a supported one."""
    code = (language or "").upper()
    return code if code in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def create_product_persona_prompt(product_data: dict[str, Any], language: str) -> str:
    """Build the system prompt that makes the model speak as the product."""
    lang = normalize_language(language)
    info = extract_product_info(product_data)
    name = info.name or ("un capo di abbigliamento" if lang == "IT" else "a clothing item")

    return PERSONA_PROMPTS[lang].format(
        name=name,
        personality=generate_personality_traits(info),
        data=json.dumps(product_data, indent=2, ensure_ascii=False),
    )


async def generate_welcome_message(
    product_data: dict[str, Any],
    language: str,
    send_message: Callable[[str], Awaitable[str]],
) -> str:
    """Ask the persona to introduce itself.

    ``send_message`` is usually ``Conversation.send_message``. If the call
    fails a localized canned greeting is returned instead.
    """
    lang = normalize_language(language)
    try:
        return await send_message(WELCOME_REQUESTS[lang])
    except Exception as e:
        logger.error(f"Error generating welcome story: {e}")

    info = extract_product_info(product_data)
    name = info.name or ("il prodotto" if lang == "IT" else "the product")
    return WELCOME_FALLBACKS[lang].format(name=name)


def validate_product_data(product_data: Any) -> bool:
    """True when the document has enough content to build a persona."""
    if not isinstance(product_data, dict):
        return False

    summary = product_data.get("summary")
    forms = product_data.get("forms")
    data = product_data.get("data")
    return bool(
        (isinstance(summary, dict) and summary.get("item_name"))
        or (isinstance(forms, list) and forms)
        or (isinstance(data, list) and data)
    )
