"""
Exam blueprint.

Routes:
    POST   /api/v1/exams/upload          — multipart: examFile + type, performedAt, expiresAt
    GET    /api/v1/exams/user            — own exams (?type=)
    GET    /api/v1/exams/status          — validity per exam type
    GET    /api/v1/exams/<id>            — own exam
    DELETE /api/v1/exams/<id>            — own exam
    PATCH  /api/v1/exams/<id>/status     — admin review
"""

from flask import Blueprint, g, jsonify, request

from oris.blueprints import request_payload
from oris.middleware.jwt_auth import admin_required, login_required
from oris.services import exam_service

exam_bp = Blueprint("exam_bp", __name__, url_prefix="/api/v1/exams")

EXAM_FILE_FIELD = "examFile"


@exam_bp.route("/upload", methods=["POST"])
@login_required
def upload_exam():
    exam = exam_service.upload_exam(
        g.current_user_id, request_payload(), request.files.get(EXAM_FILE_FIELD),
    )
    return jsonify({"message": "Exam uploaded successfully", "exam": exam.to_dict()}), 201


@exam_bp.route("/user", methods=["GET"])
@login_required
def list_user_exams():
    exams = exam_service.list_user_exams(g.current_user_id, request.args.get("type"))
    return jsonify([e.to_dict() for e in exams])


@exam_bp.route("/status", methods=["GET"])
@login_required
def exam_status():
    return jsonify(exam_service.status_by_type(g.current_user_id))


@exam_bp.route("/<int:exam_id>", methods=["GET"])
@login_required
def get_exam(exam_id):
    return jsonify(exam_service.get_exam(exam_id, g.current_user_id).to_dict())


@exam_bp.route("/<int:exam_id>", methods=["DELETE"])
@login_required
def delete_exam(exam_id):
    exam_service.delete_exam(exam_id, g.current_user_id)
    return jsonify({"message": "Exam deleted successfully"})


@exam_bp.route("/<int:exam_id>/status", methods=["PATCH"])
@admin_required
def review_exam(exam_id):
    data = request.get_json(silent=True) or {}
    exam = exam_service.review_exam(exam_id, data)
    return jsonify({"message": "Exam status updated successfully", "exam": exam.to_dict()})
