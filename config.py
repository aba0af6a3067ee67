import os

# 기본 디렉토리 설정
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# 경로 설정
LOG_FILE = os.getenv("LOG_FILE", os.path.join(BASE_DIR, "launch.log"))
QUIZ_SEED_FILE = os.getenv("QUIZ_SEED_FILE", os.path.join(BASE_DIR, "data", "quizzes.json"))

# 서버 설정
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "8000"))
OPEN_BROWSER = os.getenv("OPEN_BROWSER", "0") == "1"

# 쿠키 세션 설정
SESSION_TTL = int(os.getenv("SESSION_TTL", str(8 * 3600)))   # 8시간
SESSION_CLEANUP_INTERVAL = 300                                 # 5분

# 시험 세션 설정
AUTOSAVE_DEBOUNCE_SECONDS = float(os.getenv("AUTOSAVE_DEBOUNCE_SECONDS", "0.5"))
SWITCH_LOCK_SECONDS = int(os.getenv("SWITCH_LOCK_SECONDS", "15"))   # 탭/창 전환 시 잠금 시간
TICK_INTERVAL_SECONDS = 1.0
TIME_LOW_RATIO = 0.1    # 남은 시간이 제한 시간의 10% 미만이면 경고

# OpenAI 설정
MODEL_NAME = os.getenv("MODEL_NAME", "gpt-4o-mini")

# 퀴즈 생성 설정
MAX_PDF_PAGES = 200
MAX_PDF_SIZE = 50 * 1024 * 1024     # 50 MB
MAX_SOURCE_CHARS = 60000            # 프롬프트에 넣을 PDF 텍스트 최대 길이
MAX_GENERATED_QUESTIONS = 10
