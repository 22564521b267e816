from .answer import router as answer_router
from .course_grade import router as course_grade_router
from .quiz import router as quiz_router
from .ws import router as ws_router

routes = [
    quiz_router,
    answer_router,
    course_grade_router,
    ws_router,
]
