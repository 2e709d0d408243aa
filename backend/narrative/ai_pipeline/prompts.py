# narrative/ai_pipeline/prompts.py
"""
Prompt builders for the gatekeeper and analysis calls
"""

from narrative.models.article import CandidateArticle, utcnow

MAX_SUMMARY_WORDS = 75
FORBIDDEN_WORDS = (
    "delves, underscores, crucial, tapestry, landscape, moreover, notably, "
    "the article, the report, the author, discusses, highlights, according to"
)

CATEGORIES = [
    "Politics", "Business", "Economy", "Global Conflict", "Tech", "Science", "Health",
    "Justice", "Sports", "Entertainment", "Lifestyle", "Crypto & Finance", "Gaming",
]

STYLE_RULES = f"""Style Guidelines:
- Act as the primary source. Do NOT say "The article states" or "The report highlights". Just state the facts.
- Tone: Objective, authoritative, and direct (News Wire Style).
- Length: Around {MAX_SUMMARY_WORDS} words, short sentences suitable for audio reading.
- Do NOT use hyphens, dashes or colons within sentences.
- Do NOT use these words: {FORBIDDEN_WORDS}."""


def gatekeeper_prompt(title: str, description: str, source: str) -> str:
    return f"""Analyze this news article metadata to determine if it is "Junk", "Soft News", or "Hard News".

Headline: "{title}"
Description: "{description}"
Source: "{source}"

DEFINITIONS:
- "Hard News": Politics, Economy, Business, Finance, Markets, War, Disaster, Science, Technology, Policy, Major World Events.
- "Soft News": Sports (Championships/Results only), Entertainment (Awards/Major Scandals only), Lifestyle.
- "Junk": Rumors, Leaks, Speculation, Celebrity Sightings, Gossip, Dating Advice, Recipes, Shopping, Spam.

RULES:
1. Classify any rumor, product leak, dating advice, diet tip or minor celebrity sighting as Junk.
2. Previews and predictions are Junk. Only results or events happening now are news.
3. Accept Soft News only for major events.
4. All political and economic news is Hard News.

Respond ONLY in JSON: {{ "type": "Hard News" | "Soft News" | "Junk", "category": "String" }}"""


def full_analysis_prompt(article: CandidateArticle) -> str:
    date = utcnow().strftime("%Y-%m-%d")
    return f"""Role: You are a Lead Editor for a global news wire.
Task: Rewrite the following story into a breaking news brief and assess its bias and trustworthiness.

Input Article:
Headline: "{article.title or 'No Title'}"
Description: "{article.description or 'No Description'}"
Source: "{article.source}"
Date: {date}

--- INSTRUCTIONS ---
1. Summarize. Report the who, what, when, where and why immediately.
{STYLE_RULES}
2. Categorize. Choose ONE: {", ".join(CATEGORIES)}.
3. analysisType: "Full" for hard news (politics, economy, justice). "SentimentOnly" for opinions, reviews, sports or product announcements.
4. Political Lean: Left, Left-Leaning, Center, Right-Leaning, Right.
5. Scores are integers from 0 to 100. Bias Score: 0 = Neutral, 100 = Propaganda.
6. clusterTopic: a short, stable name for the underlying news event, shared by every outlet covering it.
7. country: "USA", "India" or "Global".
8. If the content is an advertisement, a deal or otherwise not news, set "isJunk" to true.
9. If SentimentOnly: set ALL numerical scores to 0 and politicalLean to "Not Applicable".

--- OUTPUT FORMAT ---
Respond ONLY in valid JSON. Do not add markdown blocks.

{{
  "summary": "Direct, factual news brief.",
  "category": "CategoryString",
  "politicalLean": "Center",
  "analysisType": "Full",
  "sentiment": "Neutral",
  "isJunk": false,
  "clusterTopic": "Main Event Name",
  "country": "Global",
  "primaryNoun": "Subject",
  "secondaryNoun": "Context",
  "biasScore": 10,
  "biasLabel": "Minimal Bias",
  "biasComponents": {{
    "linguistic": {{"sentimentPolarity": 0, "emotionalLanguage": 0, "loadedTerms": 0, "complexityBias": 0}},
    "sourceSelection": {{"sourceDiversity": 0, "expertBalance": 0, "attributionTransparency": 0}},
    "demographic": {{"genderBalance": 0, "racialBalance": 0, "ageRepresentation": 0}},
    "framing": {{"headlineFraming": 0, "storySelection": 0, "omissionBias": 0}}
  }},
  "credibilityScore": 90, "credibilityGrade": "A",
  "credibilityComponents": {{"sourceCredibility": 0, "factVerification": 0, "professionalism": 0, "evidenceQuality": 0, "transparency": 0, "audienceTrust": 0}},
  "reliabilityScore": 90, "reliabilityGrade": "A",
  "reliabilityComponents": {{"consistency": 0, "temporalStability": 0, "qualityControl": 0, "publicationStandards": 0, "correctionsPolicy": 0, "updateMaintenance": 0}},
  "trustLevel": "High",
  "coverageLeft": 0, "coverageCenter": 0, "coverageRight": 0,
  "keyFindings": ["Finding 1", "Finding 2"],
  "recommendations": []
}}"""


def basic_analysis_prompt(article: CandidateArticle) -> str:
    return f"""Role: You are a news wire editor.
Task: Summarize this story and classify its sentiment.

Headline: "{article.title or 'No Title'}"
Description: "{article.description or 'No Description'}"

{STYLE_RULES}

Category: choose ONE of {", ".join(CATEGORIES)}.
If the content is an advertisement or otherwise not news, set "isJunk" to true.

Respond ONLY in valid JSON:
{{"summary": "...", "category": "CategoryString", "sentiment": "Positive" | "Negative" | "Neutral", "isJunk": false}}"""
