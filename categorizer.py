"""Keyword-based transaction categorizer.

Used when the assistant's classification omits a category or a transaction
type. Categories are checked in the order below and the first keyword found
(case-insensitive substring) wins, so the order is part of the behaviour.
"""

from typing import NamedTuple, Tuple

DEFAULT_CATEGORY = "Outros"
DEFAULT_TYPE = "expense"


class CategoryRule(NamedTuple):
    category: str
    type: str
    keywords: Tuple[str, ...]


CATEGORY_RULES: Tuple[CategoryRule, ...] = (
    CategoryRule("Alimentação", "expense", (
        "ifood", "uber eats", "rappi", "mcdonalds", "burger king", "kfc", "subway", "pizza",
        "restaurante", "lanchonete", "padaria", "açougue", "mercado", "supermercado", "feira",
        "hortifruti", "comida", "almoço", "jantar", "café", "bebida", "cerveja", "refrigerante",
        "água", "leite", "pão", "carne", "frango", "peixe", "verdura", "fruta", "doce",
        "chocolate", "sorvete", "delivery", "entrega",
    )),
    CategoryRule("Transporte", "expense", (
        "uber", "cabify", "taxi", "ônibus", "metro", "trem", "gasolina", "etanol", "diesel",
        "combustível", "posto", "shell", "petrobras", "ipiranga", "estacionamento", "pedágio",
        "multa", "detran", "ipva", "seguro auto", "mecânico", "oficina", "pneu", "óleo",
        "revisão", "carro", "moto", "bicicleta", "patinete", "transporte público",
        "bilhete único", "cartão transporte",
    )),
    CategoryRule("Moradia", "expense", (
        "aluguel", "condomínio", "iptu", "luz", "energia", "gás", "internet", "telefone",
        "celular", "tv", "streaming", "netflix", "amazon prime", "spotify", "limpeza", "faxina",
        "porteiro", "segurança", "reforma", "pintura", "eletricista", "encanador", "pedreiro",
        "móveis", "decoração", "casa", "apartamento",
    )),
    CategoryRule("Lazer", "expense", (
        "cinema", "teatro", "show", "festa", "balada", "bar", "pub", "clube", "academia",
        "ginásio", "piscina", "parque", "zoológico", "museu", "exposição", "viagem", "hotel",
        "pousada", "passagem", "avião", "rodoviária", "turismo", "passeio", "diversão",
        "entretenimento", "jogo", "videogame", "livro", "revista", "jornal", "hobby", "esporte",
        "futebol", "tênis", "natação",
    )),
    CategoryRule("Saúde", "expense", (
        "médico", "dentista", "hospital", "clínica", "farmácia", "remédio", "medicamento",
        "exame", "consulta", "cirurgia", "tratamento", "fisioterapia", "psicólogo", "psiquiatra",
        "oftalmologista", "cardiologista", "dermatologista", "ginecologista", "pediatra",
        "ortopedista", "laboratório", "raio-x", "ultrassom", "ressonância", "tomografia",
        "vacina", "plano de saúde", "convênio", "unimed", "bradesco saúde", "amil", "sulamerica",
    )),
    CategoryRule("Educação", "expense", (
        "escola", "faculdade", "universidade", "curso", "aula", "professor", "mensalidade",
        "matrícula", "material escolar", "livro didático", "caderno", "caneta", "lápis",
        "mochila", "uniforme", "transporte escolar", "lanche escolar", "formatura", "diploma",
        "certificado", "idioma", "inglês", "espanhol", "francês", "alemão", "informática",
        "computação", "programação",
    )),
    CategoryRule("Salário", "income", (
        "salário", "ordenado", "pagamento", "pró-labore", "comissão", "bonus", "gratificação",
        "13º salário", "férias", "horas extras", "adicional", "trabalho", "emprego", "empresa",
        "patrão", "chefe",
    )),
    CategoryRule("Investimentos", "income", (
        "dividendo", "juros", "rendimento", "aplicação", "poupança", "cdb", "lci", "lca",
        "tesouro", "ações", "fii", "fundo", "bitcoin", "crypto", "investimento", "corretora",
        "xp", "rico", "clear", "inter", "nubank", "itaú", "bradesco", "santander",
        "banco do brasil", "caixa",
    )),
)

TRANSACTION_CATEGORIES = [rule.category for rule in CATEGORY_RULES] + [DEFAULT_CATEGORY]


def smart_categorize(description: str) -> Tuple[str, str]:
    """Return ``(category, transaction_type)`` for a free-text description."""
    lowered = (description or "").lower()
    for rule in CATEGORY_RULES:
        for keyword in rule.keywords:
            if keyword in lowered:
                return rule.category, rule.type
    return DEFAULT_CATEGORY, DEFAULT_TYPE
