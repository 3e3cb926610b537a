from flask import jsonify, request, Response
from typing import Any, Dict, Optional, List


class APIResponse:
    """Standardized API response handler"""

    @staticmethod
    def success(data: Any = None, message: str = "Success", status_code: int = 200) -> Response:
        """Standard success response"""
        response_data = {
            'success': True,
            'message': message,
            'data': data
        }
        return jsonify(response_data), status_code

    @staticmethod
    def error(message: str, errors: Optional[Dict] = None, status_code: int = 400) -> Response:
        """Standard error response"""
        response_data = {
            'success': False,
            'message': message,
            'errors': errors or {}
        }
        return jsonify(response_data), status_code

    @staticmethod
    def validation_error(errors: Dict[str, List[str]]) -> Response:
        """Validation error response"""
        return APIResponse.error(
            message="Validation failed",
            errors=errors,
            status_code=422
        )

    @staticmethod
    def handle_request_content():
        """Smart request content handling"""
        if request.is_json:
            return request.get_json(silent=True) or {}
        elif request.form:
            return request.form.to_dict()
        else:
            return {}


__all__ = ['APIResponse']
