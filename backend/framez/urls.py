"""
Framez URL Configuration
"""
from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse


def api_root(request):
    """Root endpoint with API information."""
    return JsonResponse({
        'message': 'Framez API Server',
        'version': '1.0',
        'endpoints': {
            'me': '/api/users/me/',
            'users': '/api/users/<id>/',
            'posts': '/api/posts/',
            'post': '/api/posts/<id>/',
            'comments': '/api/posts/<id>/comments/',
            'like': '/api/posts/<id>/like/',
            'follow': '/api/users/<id>/follow/',
            'signup': '/api/auth/signup/',
        },
        'admin': '/admin/',
    })


urlpatterns = [
    path('', api_root, name='api-root'),
    path('admin/', admin.site.urls),
    path('api/', include('social.urls')),
]
