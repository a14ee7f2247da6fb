"""Subject templates: snapshot the current subjects, rebuild them later."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from studyflow.study.models import (
    Subject,
    SubjectTemplate,
    TemplateSubject,
    TemplateTopic,
    Topic,
)


def snapshot_template(template_id: str, name: str, subjects: Iterable[Subject]) -> SubjectTemplate:
    """Capture subjects and topic names without any progress."""
    return SubjectTemplate(
        id=template_id,
        name=name,
        subjects=tuple(
            TemplateSubject(
                name=subject.name,
                color=subject.color,
                topics=tuple(TemplateTopic(name=t.name, order=t.order) for t in subject.topics),
                study_duration=subject.study_duration,
                description=subject.description,
                material_url=subject.material_url,
            )
            for subject in subjects
        ),
    )


def instantiate_template(
    template: SubjectTemplate,
    make_id: Callable[[], str],
) -> tuple[Subject, ...]:
    """
    Build fresh subjects from a template.

    Topics come back uncompleted and renumbered densely in their template
    order; revision progress starts at 0.
    """
    subjects = []
    for template_subject in template.subjects:
        subject_id = make_id()
        ordered = sorted(template_subject.topics, key=lambda t: t.order)
        topics = tuple(
            Topic(id=make_id(), subject_id=subject_id, name=t.name, order=index)
            for index, t in enumerate(ordered)
        )
        subjects.append(
            Subject(
                id=subject_id,
                name=template_subject.name,
                color=template_subject.color,
                topics=topics,
                study_duration=template_subject.study_duration,
                description=template_subject.description,
                material_url=template_subject.material_url,
            )
        )
    return tuple(subjects)
