# dashboard models — statistical views, agent insights, and the response contract
# serialized with camelCase aliases for the dashboard frontend
# every model is frozen: a snapshot is built once per request and never mutated

from typing import Literal, Optional
from pydantic import BaseModel, Field, model_validator

FROZEN = {"populate_by_name": True, "frozen": True}


# statistical views

class UserStats(BaseModel):
    """headline counts"""
    total: int = Field(0, ge=0)
    new_this_month: int = Field(0, ge=0, alias="newThisMonth")
    total_tests: int = Field(0, ge=0, alias="totalTests")
    total_messages: int = Field(0, ge=0, alias="totalMessages")

    model_config = FROZEN


class NamedBucket(BaseModel):
    """one entry of a categorical distribution"""
    name: str
    value: int = Field(..., ge=0)

    model_config = FROZEN


class AgeBucket(BaseModel):
    name: str
    count: int = Field(..., ge=0)

    model_config = FROZEN


class MonthlyPoint(BaseModel):
    """new users and tests taken in one calendar month"""
    month: str
    name: str
    new_users: int = Field(0, ge=0, alias="newUsers")
    tests: int = Field(0, ge=0)

    model_config = FROZEN


class WeeklyMessagePoint(BaseModel):
    """messages sent on one weekday, with the bot-originated subtotal"""
    day: str
    messages: int = Field(0, ge=0)
    bot_replies: int = Field(0, ge=0, alias="botReplies")

    model_config = FROZEN

    @model_validator(mode="after")
    def _bot_replies_within_total(self):
        if self.bot_replies > self.messages:
            raise ValueError(
                f"bot replies ({self.bot_replies}) exceed messages ({self.messages}) for {self.day}"
            )
        return self


class CorrelationBucket(BaseModel):
    """mean message count for users in one anxiety score range"""
    score: str
    mean_messages: float = Field(0.0, ge=0, alias="meanMessages")

    model_config = FROZEN


class EffectivenessSummary(BaseModel):
    total_users: int = Field(0, ge=0, alias="totalUsers")
    improved: int = Field(0, ge=0)
    improvement_percentage: float = Field(0.0, ge=0, le=100, alias="improvementPercentage")

    model_config = FROZEN

    @model_validator(mode="after")
    def _improved_within_total(self):
        if self.improved > self.total_users:
            raise ValueError("improved count exceeds eligible users")
        return self


class RetentionSummary(BaseModel):
    """retention rate may exceed 100 when the active base grew"""
    mean_months_active: float = Field(0.0, ge=0, alias="meanMonthsActive")
    active_this_month: int = Field(0, ge=0, alias="activeThisMonth")
    active_prior_month: int = Field(0, ge=0, alias="activePriorMonth")
    retention_rate: float = Field(0.0, ge=0, alias="retentionRate")

    model_config = FROZEN


class UsageHourPoint(BaseModel):
    hour: int = Field(..., ge=0, le=23)
    messages: int = Field(0, ge=0)

    model_config = FROZEN


class FreeTextSample(BaseModel):
    """one open-ended answer from a test"""
    text: str = ""

    model_config = FROZEN


class ChatAnalyticRow(BaseModel):
    """per-chat rollup with the owner's demographics and peak scores"""
    chat_id: str = Field(..., alias="chatId")
    chat_name: str = Field("", alias="chatName")
    user_gender: Optional[str] = Field(None, alias="userGender")
    user_age: Optional[int] = Field(None, alias="userAge")
    message_count: int = Field(0, ge=0, alias="messageCount")
    max_anxiety: Optional[float] = Field(None, alias="maxAnxiety")
    max_depression: Optional[float] = Field(None, alias="maxDepression")

    model_config = FROZEN


class RawSnapshot(BaseModel):
    """every statistical view for one request, fully populated before insights run"""
    user_stats: UserStats = Field(default_factory=UserStats, alias="userStats")
    anxiety_levels: tuple[NamedBucket, ...] = Field(default=(), alias="anxietyLevels")
    depression_levels: tuple[NamedBucket, ...] = Field(default=(), alias="depressionLevels")
    age_distribution: tuple[AgeBucket, ...] = Field(default=(), alias="ageDistribution")
    gender_distribution: tuple[NamedBucket, ...] = Field(default=(), alias="genderDistribution")
    monthly_activity: tuple[MonthlyPoint, ...] = Field(default=(), alias="monthlyActivity")
    message_activity: tuple[WeeklyMessagePoint, ...] = Field(default=(), alias="messageActivity")
    correlation_data: tuple[CorrelationBucket, ...] = Field(default=(), alias="correlationData")
    effectiveness: EffectivenessSummary = Field(default_factory=EffectivenessSummary)
    retention: RetentionSummary = Field(default_factory=RetentionSummary)
    usage_patterns: tuple[UsageHourPoint, ...] = Field(default=(), alias="usagePatterns")
    response_samples: tuple[FreeTextSample, ...] = Field(default=(), alias="responseSamples")
    chat_analytics: tuple[ChatAnalyticRow, ...] = Field(default=(), alias="chatAnalytics")

    model_config = FROZEN


# agent insights

class EffectivenessInsight(BaseModel):
    insight: str
    score: float = Field(..., ge=0, le=100)

    model_config = FROZEN


class ResponseAnalysis(BaseModel):
    """qualitative read of the free-text answers"""
    common_patterns: list[str] = Field(default_factory=list, alias="commonPatterns")
    key_insights: list[str] = Field(default_factory=list, alias="keyInsights")
    recommended_actions: list[str] = Field(default_factory=list, alias="recommendedActions")

    model_config = FROZEN


class InsightsBundle(BaseModel):
    """merged output of all six agents, real or fallback"""
    effectiveness: EffectivenessInsight
    significant_patterns: list[str] = Field(..., alias="significantPatterns")
    correlations: list[str]
    temporal_trends: list[str] = Field(..., alias="temporalTrends")
    recommendations: list[str]
    response_analysis: ResponseAnalysis = Field(..., alias="responseAnalysis")

    model_config = FROZEN


# response contract

class DashboardPayload(RawSnapshot):
    """raw snapshot plus the insights bundle"""
    insights: InsightsBundle


class DashboardResponse(BaseModel):
    """outcome of one dashboard build; rendered as DashboardSuccessBody or DashboardErrorBody"""
    success: bool
    stats: Optional[DashboardPayload] = None
    error: Optional[str] = None

    model_config = FROZEN


# wire bodies, one per status code

class DashboardSuccessBody(BaseModel):
    """200 body"""
    success: Literal[True] = True
    stats: DashboardPayload

    model_config = FROZEN


class DashboardErrorBody(BaseModel):
    """500 body"""
    success: Literal[False] = False
    error: str

    model_config = FROZEN
