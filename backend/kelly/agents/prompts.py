"""Prompt builders for the generative content service.

Prompts are written in French, the language sellers read the insights in.
Builders only format data; they never call the model.
"""
import json
from typing import Any, Dict, List, Type

from pydantic import BaseModel

MONTHS_FR = [
    "janvier", "février", "mars", "avril", "mai", "juin",
    "juillet", "août", "septembre", "octobre", "novembre", "décembre",
]


def schema_contract(schema: Type[BaseModel]) -> str:
    """JSON-schema contract appended to every structured prompt"""
    return (
        "📝 FORMAT DE RÉPONSE: réponds UNIQUEMENT avec un objet JSON valide conforme à ce schéma, "
        "sans texte autour:\n"
        f"{json.dumps(schema.model_json_schema(), ensure_ascii=False)}"
    )


def _dump(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2, default=str)


def build_pricing_prompt(
    articles: List[Dict[str, Any]],
    sold: List[Dict[str, Any]],
    market: List[Dict[str, Any]],
) -> str:
    """Pricing analysis over active articles, their reference bands and recent sales"""
    return f"""Tu es Kelly, experte en pricing pour Vinted. Analyse les prix de ces articles et génère des insights actionnables.

📊 ARTICLES ACTIFS ({len(articles)}) avec leur fourchette de référence:
{_dump(articles)}

💰 HISTORIQUE VENTES ({len(sold)} dernières):
{_dump(sold)}

📈 STATISTIQUES MARCHÉ (30 derniers jours, par marque / catégorie / état):
{_dump(market)}

🎯 MISSION:
Identifie 3-5 insights de prix CONCRETS et ACTIONNABLES:
1. underpriced: articles 20%+ sous leur référence
2. overpriced: articles 20%+ au-dessus de leur référence
3. optimal_price: prix parfait, félicite l'utilisateur
4. bundle_opportunity: articles similaires à grouper en lot (action create_bundle)
5. psychological_pricing: 20€→19€ ou 45€→49€
6. price_test: tester une fourchette de prix (action test_price)

⚠️ RÈGLES STRICTES:
- N'utilise QUE les identifiants d'articles fournis ci-dessus
- Base-toi sur la fourchette de référence de chaque article, jamais sur une fourchette inventée
- Sois PRÉCIS sur les montants (ex: "18€ au lieu de 15€")
- Pour adjust_price, suggested_price est le nouveau prix et confidence est entre 0 et 1
"""


def build_proactive_prompt(
    articles: List[Dict[str, Any]],
    sold: List[Dict[str, Any]],
    current_month: int,
) -> str:
    """Inventory review producing non-pricing recommendations"""
    month_name = MONTHS_FR[(current_month - 1) % 12]
    return f"""Tu es Kelly, l'assistante proactive d'une vendeuse Vinted. Nous sommes en {month_name}.

📦 ARTICLES EN STOCK ({len(articles)}):
{_dump(articles)}

💰 ARTICLES VENDUS ({len(sold)}):
{_dump(sold)}

🎯 MISSION:
Propose au maximum 5 recommandations concrètes parmi ces types:
- ready_to_list / ready_to_publish: brouillons complets à passer en "Prêt"
- stale: articles publiés depuis longtemps sans vente (baisse de 15%)
- price_drop: baisse de prix ciblée, suggested_action.value = pourcentage
- seasonal: articles à mettre en avant pour la saison
- incomplete: annonces auxquelles il manque des informations
- bundle: 2+ articles à regrouper en lot (même marque, taille ou saison)
- seo_optimization: articles sans mots-clés ni hashtags
- opportunity: toute autre opportunité de vente

⚠️ RÈGLES:
- N'utilise QUE les identifiants d'articles fournis ci-dessus
- Chaque recommandation actionnable référence au moins un article
- priority vaut high, medium ou low
"""


def build_lot_copy_prompt(articles: List[Dict[str, Any]]) -> str:
    """Title, description and SEO data for a lot built from ``articles``"""
    lines = []
    for index, article in enumerate(articles, 1):
        lines.append(
            f"Article {index}:\n"
            f"- Titre: {article.get('title') or 'Non défini'}\n"
            f"- Marque: {article.get('brand') or 'Sans marque'}\n"
            f"- Taille: {article.get('size') or 'Non définie'}\n"
            f"- Saison: {article.get('season') or 'Non définie'}\n"
            f"- État: {article.get('condition') or 'Non défini'}\n"
            f"- Prix: {article.get('price') or 0}€"
        )
    total = sum(float(a.get("price") or 0) for a in articles)

    return f"""Tu es un assistant spécialisé dans la rédaction d'annonces de lots Vinted.
Tu travailles uniquement à partir des données textuelles fournies.

Le lot contient {len(articles)} articles:

{chr(10).join(lines)}

VALEUR TOTALE: {total:.2f}€

Rédige un titre accrocheur (max 80 caractères), une description qui met en valeur les points communs
du lot, des mots-clés SEO, des hashtags et des termes de recherche.
ai_confidence_score (0-100) indique ta confiance dans la cohérence du lot."""


def build_seo_prompt(article: Dict[str, Any]) -> str:
    """SEO enrichment for a single article"""
    return f"""Tu es experte en référencement d'annonces Vinted.
Optimise le référencement de cet article:
{_dump(article)}

Fournis 5 à 10 mots-clés SEO, 5 à 10 hashtags (avec #) et 3 à 5 termes de recherche
que les acheteurs taperaient pour trouver cet article."""
